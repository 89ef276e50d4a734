from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import get_settings

Base = declarative_base()


def make_engine(url: str) -> Engine:
    """Engine for ``url``; SQLite gets thread sharing and foreign key enforcement."""
    if not url.startswith("sqlite"):
        return create_engine(url, future=True, pool_pre_ping=True)

    # FastAPI may run sync handlers on a different thread than the one that connected
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


engine = make_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
