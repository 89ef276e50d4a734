from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

T = TypeVar("T")

PaymentMethod = Literal["credit_card", "debit_card", "paypal", "cash_on_delivery"]


class CamelModel(BaseModel):
    """Base for every wire model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# -------------------- Auth --------------------

class SignupRequest(CamelModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    confirm_password: str

    @field_validator("first_name", "last_name")
    def strip_names(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("email")
    def lower_email(cls, v: str):
        return v.lower()

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    def lower_email(cls, v: str):
        return v.strip().lower()


class UserRead(CamelModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: str = "user"
    phone: Optional[str] = None
    address: Optional[dict] = None


class AuthResponse(CamelModel):
    success: bool = True
    token: str
    user: UserRead


class MeResponse(CamelModel):
    success: bool = True
    user: UserRead


# -------------------- Catalog --------------------

class CategoryCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, max_length=120, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    is_active: bool = True


class CategoryRead(CamelModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    is_active: bool = True


class CategoryRef(CamelModel):
    id: int
    name: str


class ProductImage(CamelModel):
    url: str = Field(..., min_length=1)
    alt: Optional[str] = None


class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    original_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    category_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("category", "categoryId", "category_id")
    )
    stock: int = Field(default=0, ge=0)
    rating: float = Field(default=0, ge=0, le=5)
    tags: List[str] = Field(default_factory=list)
    images: List[ProductImage] = Field(default_factory=list)
    sku: Optional[str] = Field(default=None, max_length=64)
    is_active: bool = True


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    original_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    category_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("category", "categoryId", "category_id")
    )
    stock: Optional[int] = Field(default=None, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    tags: Optional[List[str]] = None
    images: Optional[List[ProductImage]] = None
    sku: Optional[str] = Field(default=None, max_length=64)
    is_active: Optional[bool] = None


class ProductRead(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    original_price: Optional[Decimal] = None
    category: Optional[CategoryRef] = None
    stock: int
    rating: float
    tags: List[str] = []
    images: List[ProductImage] = []
    sku: Optional[str] = None
    view_count: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class ProductSummary(CamelModel):
    id: int
    name: str
    price: Decimal
    stock: int
    images: List[ProductImage] = []


class ProductFilters(CamelModel):
    category: Optional[int] = None
    search: Optional[str] = None
    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class DataResponse(CamelModel, Generic[T]):
    success: bool = True
    data: T


class PageResponse(CamelModel, Generic[T]):
    success: bool = True
    data: List[T]
    pagination: Pagination


class MessageResponse(CamelModel):
    success: bool = True
    message: str


# -------------------- Cart --------------------

class CartAdd(CamelModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)


class CartUpdate(CamelModel):
    # zero or negative removes the line
    quantity: int


class CartItemRead(CamelModel):
    product_id: int
    product: Optional[ProductSummary] = None
    quantity: int
    price: Decimal


class CartRead(CamelModel):
    id: int
    user_id: int
    items: List[CartItemRead] = []
    total_items: int
    total_price: Decimal


# -------------------- Orders --------------------

class Address(CamelModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderCreate(CamelModel):
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethod = "credit_card"


class OrderStatusUpdate(CamelModel):
    status: str = Field(..., min_length=1)


class OrderItemRead(CamelModel):
    product_id: int
    product: Optional[ProductSummary] = None
    quantity: int
    price: Decimal


class OrderRead(CamelModel):
    id: int
    order_number: str
    user_id: int
    items: List[OrderItemRead] = []
    shipping_address: dict
    billing_address: dict
    subtotal: Decimal
    tax: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    payment_method: str
    status: str
    payment_status: str
    created_at: datetime
    updated_at: datetime
