import os
from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Keep the module-level engine off the working directory while tests import the app
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from storefront import models  # noqa: E402
from storefront.auth import create_access_token, hash_password  # noqa: E402
from storefront.db import Base  # noqa: E402
from storefront.main import app, get_db  # noqa: E402
from storefront.observability import Metrics  # noqa: E402


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture(scope="function")
def client(db_session):
    # Override dependency to use the same session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    app.state.metrics = Metrics()
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(role: str = "user", email: str = None, password: str = "secret123") -> models.User:
        counter["n"] += 1
        user = models.User(
            first_name="Test",
            last_name=f"User{counter['n']}",
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(password),
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def auth_header(user: models.User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def user_headers(user):
    return auth_header(user)


@pytest.fixture
def admin_headers(make_user):
    return auth_header(make_user(role="admin"))


@pytest.fixture
def make_product(db_session):
    def _make(name: str = "Widget", price: str = "10.00", stock: int = 10, **fields) -> models.Product:
        product = models.Product(name=name, price=Decimal(price), stock=stock, **fields)
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def address() -> dict:
    return {
        "street": "12 Market St",
        "city": "Portland",
        "state": "OR",
        "zipCode": "97201",
        "country": "US",
    }


@pytest.fixture
def headers_for():
    return auth_header
