import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import List, Optional

import jwt
import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import Base, engine, SessionLocal
from . import crud, models, schemas
from .auth import bearer_token, decode_access_token
from .config import get_settings
from .errors import ErrorKind, ShopError, status_for
from .observability import VERSION, Metrics, configure_logging, health_report

# Create tables if not existing. In production, use Alembic.
Base.metadata.create_all(bind=engine)

configure_logging(get_settings())
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    metrics = app.state.metrics
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        metrics.database_connection_status.set(1)
        logger.info("database_connected", url=engine.url.render_as_string(hide_password=True))
    except SQLAlchemyError as e:
        metrics.database_connection_status.set(0)
        logger.error("database_connection_failed", error=str(e))
    logger.info("server_started", environment=get_settings().environment)
    yield
    logger.info("server_stopped")


app = FastAPI(title="Storefront API", version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One registry per process, reached by handlers through get_metrics
app.state.metrics = Metrics()


# -------------------- Dependencies --------------------

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_metrics(request: Request) -> Metrics:
    return request.app.state.metrics


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> models.User:
    """Resolve the bearer token to a live user, re-reading the user on every request."""
    token = bearer_token(authorization)
    if token is None:
        logger.warning("auth_missing_token", route=request.url.path)
        raise ShopError(ErrorKind.UNAUTHORIZED, "Not authorized to access this route", reason="missing_token")
    try:
        claims = decode_access_token(token)
        user_id = int(claims["sub"])
    except (jwt.PyJWTError, ValueError) as e:
        logger.warning("auth_invalid_token", route=request.url.path, error=str(e))
        raise ShopError(
            ErrorKind.UNAUTHORIZED, "Not authorized to access this route", reason="invalid_token"
        ) from e

    user = db.get(models.User, user_id)
    if user is None or not user.is_active:
        logger.warning("auth_user_not_found", user_id=user_id, route=request.url.path)
        raise ShopError(ErrorKind.UNAUTHORIZED, "User not found", reason="user_not_found")
    request.state.user_id = user.id
    return user


def require_admin(request: Request, user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != "admin":
        logger.warning("auth_insufficient_role", user_id=user.id, role=user.role, route=request.url.path)
        raise ShopError(ErrorKind.FORBIDDEN, "Not authorized to access this route")
    return user


# -------------------- Errors & request logging --------------------

def _error_body(kind: str, message: str, errors: Optional[list] = None) -> dict:
    body = {"success": False, "kind": kind, "message": message}
    if errors:
        body["errors"] = errors
    return body


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    status_code = status_for(exc.kind)
    if exc.kind in (ErrorKind.UNAUTHORIZED, ErrorKind.INVALID_CREDENTIALS):
        request.app.state.metrics.auth_failure.labels(reason=exc.reason).inc()
    logger.warning(
        "request_rejected",
        kind=exc.kind.value,
        message=exc.message,
        method=request.method,
        path=request.url.path,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content=_error_body(exc.kind.value, exc.message, exc.errors))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        message = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        errors.append({"field": field, "message": message})
    if errors and errors[0]["field"]:
        message = f"{errors[0]['field']}: {errors[0]['message']}"
    elif errors:
        message = errors[0]["message"]
    else:
        message = "Invalid request"
    logger.warning("request_invalid", method=request.method, path=request.url.path, errors=errors)
    return JSONResponse(status_code=400, content=_error_body(ErrorKind.VALIDATION.value, message, errors))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        logger.warning("route_not_found", method=request.method, path=request.url.path)
        return JSONResponse(status_code=404, content={"success": False, "message": "Route not found"})
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_error",
        method=request.method,
        path=request.url.path,
        user_id=getattr(request.state, "user_id", "anonymous"),
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal Server Error"})


def _record_request(request: Request, status_code: int, elapsed: float):
    route = getattr(request.scope.get("route"), "path", "unmatched")
    fields = {
        "method": request.method,
        "route": route,
        "status_code": status_code,
        "response_time_ms": round(elapsed * 1000, 2),
        "user_id": getattr(request.state, "user_id", "anonymous"),
        "user_agent": request.headers.get("user-agent"),
    }
    if status_code >= 500:
        logger.error("http_request", **fields)
    elif status_code >= 400:
        logger.warning("http_request", **fields)
    else:
        logger.info("http_request", **fields)
    request.app.state.metrics.observe_request(request.method, route, status_code, elapsed)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        # unhandled_error_handler renders the body one layer further out
        _record_request(request, 500, time.perf_counter() - started)
        raise
    _record_request(request, response.status_code, time.perf_counter() - started)
    return response


# -------------------- Index --------------------

@app.get("/")
def index():
    return {
        "success": True,
        "message": "Storefront API",
        "version": VERSION,
        "endpoints": {
            "auth": "/api/auth",
            "products": "/api/products",
            "categories": "/api/categories",
            "cart": "/api/cart",
            "orders": "/api/orders",
            "observability": {
                "metrics": "/observability/metrics",
                "health": "/observability/health",
                "ready": "/observability/ready",
            },
        },
    }


# -------------------- Auth --------------------

@app.post("/api/auth/signup", response_model=schemas.AuthResponse, status_code=201)
def signup(
    payload: schemas.SignupRequest,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    try:
        user, token = crud.signup(db, payload)
    except ShopError as e:
        metrics.auth_signup.labels(status="failed").inc()
        metrics.auth_failure.labels(reason=e.reason).inc()
        raise
    metrics.auth_signup.labels(status="success").inc()
    return {"token": token, "user": user}


@app.post("/api/auth/login", response_model=schemas.AuthResponse)
def login(
    payload: schemas.LoginRequest,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    try:
        user, token = crud.login(db, payload)
    except ShopError:
        metrics.auth_login.labels(status="failed").inc()
        raise
    metrics.auth_login.labels(status="success").inc()
    return {"token": token, "user": user}


@app.get("/api/auth/me", response_model=schemas.MeResponse)
def me(user: models.User = Depends(get_current_user)):
    return {"user": user}


# -------------------- Catalog --------------------

@app.get("/api/categories", response_model=schemas.DataResponse[List[schemas.CategoryRead]])
def list_categories(db: Session = Depends(get_db)):
    return {"data": crud.list_categories(db)}


@app.post("/api/categories", response_model=schemas.DataResponse[schemas.CategoryRead], status_code=201)
def create_category(
    payload: schemas.CategoryCreate,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
    admin: models.User = Depends(require_admin),
):
    category = crud.create_category(db, payload)
    metrics.admin_action.labels(action="create", resource="category").inc()
    return {"data": category}


@app.get("/api/products", response_model=schemas.PageResponse[schemas.ProductRead])
def list_products(
    category: Optional[int] = None,
    search: Optional[str] = Query(None, max_length=200),
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    rating: Optional[float] = Query(None, ge=0, le=5),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    filters = schemas.ProductFilters(
        category=category, search=search, min_price=min_price, max_price=max_price, rating=rating
    )
    if filters.search:
        metrics.search_query.inc()
    products, pagination = crud.list_products(db, filters, page=page, limit=limit)
    return {"data": products, "pagination": pagination}


@app.get("/api/products/{product_id}", response_model=schemas.DataResponse[schemas.ProductRead])
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    product = crud.get_product(db, product_id)
    category = product.category.name if product.category else "unknown"
    metrics.product_view.labels(product_id=str(product.id), category=category).inc()
    return {"data": product}


@app.post("/api/products", response_model=schemas.DataResponse[schemas.ProductRead], status_code=201)
def create_product(
    payload: schemas.ProductCreate,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
    admin: models.User = Depends(require_admin),
):
    product = crud.create_product(db, payload)
    metrics.admin_action.labels(action="create", resource="product").inc()
    return {"data": product}


@app.put("/api/products/{product_id}", response_model=schemas.DataResponse[schemas.ProductRead])
def update_product(
    product_id: int,
    payload: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
    admin: models.User = Depends(require_admin),
):
    product = crud.update_product(db, product_id, payload)
    metrics.admin_action.labels(action="update", resource="product").inc()
    return {"data": product}


@app.delete("/api/products/{product_id}", response_model=schemas.MessageResponse)
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
    admin: models.User = Depends(require_admin),
):
    crud.delete_product(db, product_id)
    metrics.admin_action.labels(action="delete", resource="product").inc()
    return {"message": "Product deleted successfully"}


# -------------------- Cart --------------------

@app.get("/api/cart", response_model=schemas.DataResponse[schemas.CartRead])
def get_cart(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"data": crud.get_cart(db, user)}


@app.post("/api/cart/add", response_model=schemas.DataResponse[schemas.CartRead])
def add_to_cart(
    payload: schemas.CartAdd,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    cart = crud.add_item(db, user, payload.product_id, payload.quantity)
    metrics.cart_add.labels(product_id=str(payload.product_id)).inc()
    metrics.cart_size.observe(cart.total_items)
    return {"data": cart}


@app.put("/api/cart/{product_id}", response_model=schemas.DataResponse[schemas.CartRead])
def update_cart_item(
    product_id: int,
    payload: schemas.CartUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    cart = crud.update_item(db, user, product_id, payload.quantity)
    if payload.quantity <= 0:
        metrics.cart_remove.labels(product_id=str(product_id)).inc()
    metrics.cart_size.observe(cart.total_items)
    return {"data": cart}


@app.delete("/api/cart/{product_id}", response_model=schemas.DataResponse[schemas.CartRead])
def remove_from_cart(
    product_id: int,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    cart = crud.remove_item(db, user, product_id)
    metrics.cart_remove.labels(product_id=str(product_id)).inc()
    metrics.cart_size.observe(cart.total_items)
    return {"data": cart}


@app.delete("/api/cart", response_model=schemas.DataResponse[schemas.CartRead])
def clear_cart(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"data": crud.clear_cart(db, user)}


# -------------------- Orders --------------------

@app.post("/api/orders", response_model=schemas.DataResponse[schemas.OrderRead], status_code=201)
def create_order(
    payload: schemas.OrderCreate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
):
    metrics.checkout_attempt.labels(status="initiated").inc()
    try:
        order = crud.place_order(db, user, payload)
    except ShopError as e:
        metrics.checkout_attempt.labels(status="failed").inc()
        metrics.order_failed.labels(reason=e.reason).inc()
        raise
    metrics.order_created.labels(status=order.status).inc()
    metrics.order_value.observe(float(order.total_amount))
    metrics.checkout_success.inc()
    return {"data": order}


# declared before /api/orders/{order_id} so "user" is not parsed as an id
@app.get("/api/orders/user/orders", response_model=schemas.PageResponse[schemas.OrderRead])
def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    orders, pagination = crud.list_user_orders(db, user, page=page, limit=limit)
    return {"data": orders, "pagination": pagination}


@app.get("/api/orders/{order_id}", response_model=schemas.DataResponse[schemas.OrderRead])
def get_order(
    order_id: int,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"data": crud.get_order(db, order_id, user)}


@app.put("/api/orders/{order_id}/status", response_model=schemas.DataResponse[schemas.OrderRead])
def update_order_status(
    order_id: int,
    payload: schemas.OrderStatusUpdate,
    db: Session = Depends(get_db),
    metrics: Metrics = Depends(get_metrics),
    admin: models.User = Depends(require_admin),
):
    order = crud.update_order_status(db, order_id, payload.status)
    metrics.admin_action.labels(action="update_status", resource="order").inc()
    return {"data": order}


@app.get("/api/orders", response_model=schemas.PageResponse[schemas.OrderRead])
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    orders, pagination = crud.list_orders(db, page=page, limit=limit, status=status)
    return {"data": orders, "pagination": pagination}


# -------------------- Observability --------------------

@app.get("/observability/metrics")
def metrics_endpoint(metrics: Metrics = Depends(get_metrics)):
    return Response(content=metrics.render(), media_type=metrics.content_type)


@app.get("/observability/health")
def health(metrics: Metrics = Depends(get_metrics)):
    return health_report(get_settings(), metrics)


@app.get("/observability/ready")
def ready(db: Session = Depends(get_db), metrics: Metrics = Depends(get_metrics)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        metrics.database_connection_status.set(0)
        logger.warning("readiness_failed", error=str(e))
        return JSONResponse(status_code=503, content={"ready": False, "message": "Database not connected"})
    metrics.database_connection_status.set(1)
    return {"ready": True, "message": "Service is ready", "database": "connected"}
