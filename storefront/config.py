"""Runtime configuration for the storefront (read from the environment, replaceable in tests)."""
import os
from decimal import Decimal
from typing import Mapping, NamedTuple, Optional


class Settings(NamedTuple):
    database_url: str
    jwt_secret: str
    jwt_expire_seconds: int
    log_level: str
    log_format: str
    environment: str
    tax_rate: Decimal
    free_shipping_threshold: Decimal
    shipping_flat_rate: Decimal


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    return Settings(
        database_url=env.get("DATABASE_URL", "sqlite:///./storefront.db"),
        jwt_secret=env.get("JWT_SECRET", "dev-secret"),
        jwt_expire_seconds=int(env.get("JWT_EXPIRE_SECONDS", 60 * 60 * 24 * 7)),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        log_format=env.get("LOG_FORMAT", "json").lower(),
        environment=env.get("APP_ENV", "development"),
        tax_rate=Decimal(env.get("TAX_RATE", "0.10")),
        free_shipping_threshold=Decimal(env.get("FREE_SHIPPING_THRESHOLD", "100")),
        shipping_flat_rate=Decimal(env.get("SHIPPING_FLAT_RATE", "10")),
    )


state = load_settings()


def get_settings() -> Settings:
    return state


def update_settings(**changes) -> Settings:
    global state
    state = state._replace(**changes)
    return state


def reset_settings():
    global state
    state = load_settings()
