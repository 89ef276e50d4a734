"""Error taxonomy shared by the service layer and the HTTP boundary.

Services raise :class:`ShopError` with an :class:`ErrorKind`; ``main`` maps the
kind to a status code with :func:`status_for`. Nothing inspects messages.
"""
import enum
from typing import List, Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    DUPLICATE_EMAIL = "duplicate_email"
    DUPLICATE_SLUG = "duplicate_slug"
    INVALID_CREDENTIALS = "invalid_credentials"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    EMPTY_CART = "empty_cart"
    INVALID_STATUS = "invalid_status"


class ShopError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        errors: Optional[List[dict]] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.errors = errors or []
        # finer-grained label for metrics, defaults to the kind
        self.reason = reason or kind.value


def status_for(kind: ErrorKind) -> int:
    if kind in (
        ErrorKind.VALIDATION,
        ErrorKind.DUPLICATE_EMAIL,
        ErrorKind.DUPLICATE_SLUG,
        ErrorKind.INSUFFICIENT_STOCK,
        ErrorKind.EMPTY_CART,
        ErrorKind.INVALID_STATUS,
    ):
        return 400
    if kind in (ErrorKind.INVALID_CREDENTIALS, ErrorKind.UNAUTHORIZED):
        return 401
    if kind is ErrorKind.FORBIDDEN:
        return 403
    if kind is ErrorKind.NOT_FOUND:
        return 404
    return 500


def not_found(what: str) -> ShopError:
    return ShopError(ErrorKind.NOT_FOUND, f"{what} not found")
