import math
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import create_access_token, hash_password, verify_password
from .config import Settings, get_settings
from .errors import ErrorKind, ShopError, not_found
from .utils import clean_text, escape_like, generate_order_number, slugify

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")

# Business rule: money is stored rounded to 2 decimals, half up

def round_amount(value) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _paginate(query, page: int, limit: int) -> Tuple[list, schemas.Pagination]:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pages = math.ceil(total / limit) if limit else 0
    return items, schemas.Pagination(page=page, limit=limit, total=total, pages=pages)


# -------------------- Users --------------------

def signup(db: Session, payload: schemas.SignupRequest) -> Tuple[models.User, str]:
    existing = db.query(models.User).filter(models.User.email == payload.email).first()
    if existing:
        logger.warning("signup_email_exists", email=payload.email)
        raise ShopError(ErrorKind.DUPLICATE_EMAIL, "Email already registered", reason="email_already_exists")

    user = models.User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        # lost a race against a concurrent signup for the same address
        db.rollback()
        raise ShopError(ErrorKind.DUPLICATE_EMAIL, "Email already registered", reason="email_already_exists") from e
    db.refresh(user)
    logger.info("user_signup", user_id=user.id, email=user.email)
    return user, create_access_token(user.id, user.role)


def login(db: Session, payload: schemas.LoginRequest) -> Tuple[models.User, str]:
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user:
        logger.warning("login_unknown_email", email=payload.email)
        raise ShopError(ErrorKind.INVALID_CREDENTIALS, "Invalid credentials", reason="user_not_found")
    if not verify_password(payload.password, user.password_hash):
        logger.warning("login_bad_password", email=payload.email)
        raise ShopError(ErrorKind.INVALID_CREDENTIALS, "Invalid credentials", reason="invalid_password")
    if not user.is_active:
        logger.warning("login_inactive_user", user_id=user.id)
        raise ShopError(ErrorKind.INVALID_CREDENTIALS, "Account is disabled", reason="inactive_user")

    user.last_login = models.utcnow()
    db.commit()
    db.refresh(user)
    logger.info("user_login", user_id=user.id, email=user.email)
    return user, create_access_token(user.id, user.role)


# -------------------- Catalog --------------------

def list_categories(db: Session) -> List[models.Category]:
    return (
        db.query(models.Category)
        .filter(models.Category.is_active.is_(True))
        .order_by(models.Category.name)
        .all()
    )


def create_category(db: Session, payload: schemas.CategoryCreate) -> models.Category:
    slug = payload.slug or slugify(payload.name)
    if not slug:
        raise ShopError(ErrorKind.VALIDATION, "Category slug is empty")
    if db.query(models.Category).filter(models.Category.slug == slug).first():
        raise ShopError(ErrorKind.DUPLICATE_SLUG, f"Category slug '{slug}' already exists")

    category = models.Category(
        name=payload.name, slug=slug, description=payload.description, is_active=payload.is_active
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info("category_created", category_id=category.id, slug=slug)
    return category


def _check_category(db: Session, category_id: Optional[int]):
    if category_id is not None and db.get(models.Category, category_id) is None:
        raise not_found("Category")


def list_products(
    db: Session, filters: schemas.ProductFilters, page: int = 1, limit: int = 20
) -> Tuple[List[models.Product], schemas.Pagination]:
    Product = models.Product
    query = db.query(Product).filter(Product.is_active.is_(True))

    if filters.category is not None:
        query = query.filter(Product.category_id == filters.category)
    if filters.search:
        term = clean_text(filters.search)
        if term:
            pattern = f"%{escape_like(term)}%"
            query = query.filter(
                or_(
                    Product.name.ilike(pattern, escape="\\"),
                    Product.description.ilike(pattern, escape="\\"),
                )
            )
    if filters.min_price is not None:
        query = query.filter(Product.price >= filters.min_price)
    if filters.max_price is not None:
        query = query.filter(Product.price <= filters.max_price)
    if filters.rating is not None:
        query = query.filter(Product.rating >= filters.rating)

    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    products, pagination = _paginate(query, page, limit)
    logger.info("products_listed", count=len(products), total=pagination.total, page=page, limit=limit)
    return products, pagination


def _active_product(db: Session, product_id: int) -> models.Product:
    product = db.get(models.Product, product_id)
    if product is None or not product.is_active:
        raise not_found("Product")
    return product


def get_product(db: Session, product_id: int) -> models.Product:
    """Fetch an active product and count the view."""
    product = _active_product(db, product_id)
    # SQL-side increment so concurrent views are not lost
    product.view_count = models.Product.view_count + 1
    db.commit()
    db.refresh(product)
    logger.info("product_viewed", product_id=product.id, product_name=product.name)
    return product


def create_product(db: Session, payload: schemas.ProductCreate) -> models.Product:
    _check_category(db, payload.category_id)
    product = models.Product(**payload.model_dump())
    db.add(product)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ShopError(ErrorKind.VALIDATION, "Product SKU already exists") from e
    db.refresh(product)
    logger.info("product_created", product_id=product.id, product_name=product.name)
    return product


# columns that accept an explicit null on update
_NULLABLE_PRODUCT_FIELDS = {"description", "original_price", "category_id", "sku"}


def update_product(db: Session, product_id: int, payload: schemas.ProductUpdate) -> models.Product:
    product = db.get(models.Product, product_id)
    if product is None:
        raise not_found("Product")

    changes = {
        k: v
        for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in _NULLABLE_PRODUCT_FIELDS
    }
    if "category_id" in changes:
        _check_category(db, changes["category_id"])
    for field, value in changes.items():
        setattr(product, field, value)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ShopError(ErrorKind.VALIDATION, "Product SKU already exists") from e
    db.refresh(product)
    logger.info("product_updated", product_id=product.id, fields=sorted(changes))
    return product


def delete_product(db: Session, product_id: int) -> models.Product:
    """Soft delete: the row stays so past orders keep their reference."""
    product = db.get(models.Product, product_id)
    if product is None:
        raise not_found("Product")
    product.is_active = False
    db.commit()
    logger.info("product_deleted", product_id=product_id, product_name=product.name)
    return product


# -------------------- Cart --------------------

def recompute_totals(cart: models.Cart) -> models.Cart:
    cart.total_items = sum(item.quantity for item in cart.items)
    cart.total_price = round_amount(
        sum((Decimal(item.price) * item.quantity for item in cart.items), ZERO)
    )
    return cart


def _get_or_create_cart(db: Session, user_id: int) -> models.Cart:
    cart = db.query(models.Cart).filter(models.Cart.user_id == user_id).first()
    if cart is None:
        cart = models.Cart(user_id=user_id, total_items=0, total_price=ZERO)
        db.add(cart)
        db.flush()
    return cart


def _find_line(cart: models.Cart, product_id: int) -> Optional[models.CartItem]:
    for item in cart.items:
        if item.product_id == product_id:
            return item
    return None


def get_cart(db: Session, user: models.User) -> models.Cart:
    cart = _get_or_create_cart(db, user.id)
    db.commit()
    logger.info("cart_retrieved", user_id=user.id, item_count=len(cart.items))
    return cart


def add_item(db: Session, user: models.User, product_id: int, quantity: int = 1) -> models.Cart:
    product = _active_product(db, product_id)
    if product.stock < quantity:
        raise ShopError(ErrorKind.INSUFFICIENT_STOCK, "Insufficient stock")

    cart = _get_or_create_cart(db, user.id)
    line = _find_line(cart, product_id)
    if line is not None:
        line.quantity += quantity
    else:
        cart.items.append(
            models.CartItem(product_id=product.id, product=product, quantity=quantity, price=product.price)
        )
    recompute_totals(cart)
    db.commit()
    logger.info(
        "cart_item_added", user_id=user.id, product_id=product_id, quantity=quantity, cart_total=cart.total_items
    )
    return cart


def remove_item(db: Session, user: models.User, product_id: int) -> models.Cart:
    cart = _get_or_create_cart(db, user.id)
    line = _find_line(cart, product_id)
    if line is not None:
        cart.items.remove(line)
    recompute_totals(cart)
    db.commit()
    logger.info("cart_item_removed", user_id=user.id, product_id=product_id, cart_total=cart.total_items)
    return cart


def update_item(db: Session, user: models.User, product_id: int, quantity: int) -> models.Cart:
    if quantity <= 0:
        return remove_item(db, user, product_id)

    product = _active_product(db, product_id)
    if product.stock < quantity:
        raise ShopError(ErrorKind.INSUFFICIENT_STOCK, "Insufficient stock")

    cart = _get_or_create_cart(db, user.id)
    line = _find_line(cart, product_id)
    if line is None:
        raise ShopError(ErrorKind.NOT_FOUND, "Item not in cart")
    line.quantity = quantity
    recompute_totals(cart)
    db.commit()
    logger.info(
        "cart_item_updated", user_id=user.id, product_id=product_id, quantity=quantity, cart_total=cart.total_items
    )
    return cart


def clear_cart(db: Session, user: models.User) -> models.Cart:
    cart = _get_or_create_cart(db, user.id)
    cart.items.clear()
    recompute_totals(cart)
    db.commit()
    logger.info("cart_cleared", user_id=user.id)
    return cart


# -------------------- Orders --------------------

def order_totals(
    subtotal: Decimal, settings: Optional[Settings] = None
) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
    """Return (subtotal, tax, shipping, total), each rounded to cents."""
    settings = settings or get_settings()
    subtotal = round_amount(subtotal)
    tax = round_amount(subtotal * settings.tax_rate)
    if subtotal > settings.free_shipping_threshold:
        shipping = ZERO
    else:
        shipping = round_amount(settings.shipping_flat_rate)
    return subtotal, tax, shipping, round_amount(subtotal + tax + shipping)


def _reserve_stock(db: Session, line: models.CartItem):
    Product = models.Product
    result = db.execute(
        update(Product)
        .where(
            Product.id == line.product_id,
            Product.is_active.is_(True),
            Product.stock >= line.quantity,
        )
        .values(stock=Product.stock - line.quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return
    product = db.get(Product, line.product_id)
    if product is None or not product.is_active:
        raise ShopError(
            ErrorKind.NOT_FOUND, f"Product {line.product_id} not found", reason="product_not_found"
        )
    raise ShopError(
        ErrorKind.INSUFFICIENT_STOCK, f"Insufficient stock for {product.name}", reason="insufficient_stock"
    )


def place_order(db: Session, user: models.User, payload: schemas.OrderCreate) -> models.Order:
    """Turn the user's cart into an order.

    Stock is decremented with a conditional UPDATE per line, so a line only
    succeeds while enough stock remains. Reservations, the order row and the
    cart reset share one transaction: any failure rolls all of them back.
    """
    cart = db.query(models.Cart).filter(models.Cart.user_id == user.id).first()
    if cart is None or not cart.items:
        raise ShopError(ErrorKind.EMPTY_CART, "Cart is empty")

    try:
        items = []
        subtotal = ZERO
        for line in cart.items:
            _reserve_stock(db, line)
            items.append(models.OrderItem(product_id=line.product_id, quantity=line.quantity, price=line.price))
            subtotal += Decimal(line.price) * line.quantity

        subtotal, tax, shipping, total = order_totals(subtotal)
        shipping_address = payload.shipping_address.model_dump(by_alias=True)
        if payload.billing_address is not None:
            billing_address = payload.billing_address.model_dump(by_alias=True)
        else:
            billing_address = shipping_address

        order = models.Order(
            order_number=generate_order_number(),
            user_id=user.id,
            items=items,
            shipping_address=shipping_address,
            billing_address=billing_address,
            subtotal=subtotal,
            tax=tax,
            shipping_cost=shipping,
            total_amount=total,
            payment_method=payload.payment_method,
            status="pending",
            payment_status="pending",
        )
        db.add(order)
        cart.items.clear()
        recompute_totals(cart)
        db.commit()
    except (ShopError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "order_created",
        order_id=order.id,
        order_number=order.order_number,
        user_id=user.id,
        total_amount=str(order.total_amount),
        item_count=len(items),
    )
    return order


def get_order(db: Session, order_id: int, user: models.User) -> models.Order:
    order = db.get(models.Order, order_id)
    if order is None:
        raise not_found("Order")
    if order.user_id != user.id and user.role != "admin":
        logger.warning("order_access_denied", order_id=order_id, user_id=user.id)
        raise ShopError(ErrorKind.FORBIDDEN, "Not authorized to view this order")
    return order


def list_user_orders(
    db: Session, user: models.User, page: int = 1, limit: int = 10
) -> Tuple[List[models.Order], schemas.Pagination]:
    query = (
        db.query(models.Order)
        .filter(models.Order.user_id == user.id)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
    )
    orders, pagination = _paginate(query, page, limit)
    logger.info("user_orders_listed", user_id=user.id, count=len(orders), total=pagination.total)
    return orders, pagination


def list_orders(
    db: Session, page: int = 1, limit: int = 20, status: Optional[str] = None
) -> Tuple[List[models.Order], schemas.Pagination]:
    query = db.query(models.Order)
    if status:
        query = query.filter(models.Order.status == status)
    query = query.order_by(models.Order.created_at.desc(), models.Order.id.desc())
    return _paginate(query, page, limit)


def update_order_status(db: Session, order_id: int, status: str) -> models.Order:
    # no transition graph: any status may follow any other
    if status not in models.ORDER_STATUSES:
        raise ShopError(ErrorKind.INVALID_STATUS, "Invalid order status")
    order = db.get(models.Order, order_id)
    if order is None:
        raise not_found("Order")
    order.status = status
    db.commit()
    db.refresh(order)
    logger.info("order_status_updated", order_id=order.id, order_number=order.order_number, status=status)
    return order
