"""
Catalog seed
- Removes existing categories and products; products already referenced by
  orders are deactivated instead of deleted
- Inserts the demo categories and products
- Creates an admin account when ``--admin-email`` is given and it does not exist

Usage:
  python -m scripts.seed --db sqlite:///./storefront.db --admin-email admin@example.com --admin-password secret123
"""
import argparse
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from storefront import models
from storefront.auth import hash_password
from storefront.db import Base, make_engine

CATEGORIES = [
    {"name": "Electronics", "slug": "electronics", "description": "Electronic devices and gadgets"},
    {"name": "Laptops & Computers", "slug": "laptops-computers", "description": "Laptops, desktops, and computer accessories"},
    {"name": "Smartphones", "slug": "smartphones", "description": "Mobile phones and accessories"},
    {"name": "Headphones & Audio", "slug": "headphones-audio", "description": "Headphones, speakers, and audio equipment"},
    {"name": "Cameras", "slug": "cameras", "description": "Digital cameras and photography equipment"},
    {"name": "Wearables", "slug": "wearables", "description": "Smartwatches, fitness trackers, and wearable devices"},
]

# (category slug, product fields)
PRODUCTS = [
    ("laptops-computers", {
        "name": 'MacBook Pro 16" M3 Max',
        "description": "Powerful laptop with M3 Max chip, 16GB RAM, 512GB SSD.",
        "price": Decimal("2499.99"), "original_price": Decimal("2999.99"),
        "stock": 25, "rating": 4.8, "sku": "MBPRO-16-M3", "view_count": 1250,
        "tags": ["laptop", "apple", "professional"],
        "images": [{"url": "https://images.unsplash.com/photo-1517336714731-489689fd1ca8?w=500&h=500&fit=crop", "alt": "MacBook Pro"}],
    }),
    ("laptops-computers", {
        "name": "Dell XPS 15 Laptop",
        "description": "High-performance laptop with Intel i7, RTX 4060, 16GB RAM, 512GB SSD.",
        "price": Decimal("1799.99"), "original_price": Decimal("2099.99"),
        "stock": 30, "rating": 4.6, "sku": "DELL-XPS-15", "view_count": 980,
        "tags": ["laptop", "dell", "gaming"],
        "images": [{"url": "https://images.unsplash.com/photo-1588872657840-790ff3bde08c?w=500&h=500&fit=crop", "alt": "Dell XPS 15"}],
    }),
    ("smartphones", {
        "name": "iPhone 15 Pro Max",
        "description": "A17 Pro chip, 48MP camera, titanium design. 256GB storage.",
        "price": Decimal("1199.99"), "original_price": Decimal("1299.99"),
        "stock": 50, "rating": 4.7, "sku": "IPH-15-PM", "view_count": 2100,
        "tags": ["phone", "apple"],
        "images": [{"url": "https://images.unsplash.com/photo-1592286927505-1def25115558?w=500&h=500&fit=crop", "alt": "iPhone 15 Pro Max"}],
    }),
    ("headphones-audio", {
        "name": "Sony WH-1000XM5 Headphones",
        "description": "Industry-leading noise cancellation with 30 hour battery life.",
        "price": Decimal("399.99"), "original_price": Decimal("449.99"),
        "stock": 60, "rating": 4.7, "sku": "SONY-WH1000XM5", "view_count": 870,
        "tags": ["audio", "wireless", "noise-cancelling"],
        "images": [],
    }),
    ("cameras", {
        "name": "Canon EOS R6 Mark II",
        "description": "Full-frame mirrorless camera, 24.2MP, 4K60 video.",
        "price": Decimal("2499.00"), "original_price": None,
        "stock": 12, "rating": 4.9, "sku": "CANON-R6M2", "view_count": 430,
        "tags": ["camera", "mirrorless"],
        "images": [],
    }),
    ("wearables", {
        "name": "Apple Watch Series 9",
        "description": "Always-on Retina display, blood oxygen and ECG apps.",
        "price": Decimal("399.00"), "original_price": Decimal("429.00"),
        "stock": 80, "rating": 4.6, "sku": "AW-S9-45", "view_count": 640,
        "tags": ["watch", "fitness", "apple"],
        "images": [],
    }),
    ("electronics", {
        "name": "Anker USB-C Charger 65W",
        "description": "Compact GaN charger for laptops and phones.",
        "price": Decimal("45.99"), "original_price": Decimal("59.99"),
        "stock": 200, "rating": 4.5, "sku": "ANK-65W", "view_count": 150,
        "tags": ["charger", "usb-c"],
        "images": [],
    }),
]


def seed(db: Session, admin_email: Optional[str] = None, admin_password: Optional[str] = None) -> dict:
    # carts point at products that are about to disappear
    db.query(models.CartItem).delete(synchronize_session=False)
    db.query(models.Cart).update({"total_items": 0, "total_price": 0}, synchronize_session=False)
    db.query(models.Product).filter(
        ~models.Product.id.in_(select(models.OrderItem.product_id))
    ).delete(synchronize_session=False)
    db.query(models.Product).update(
        {"is_active": False, "sku": None, "category_id": None}, synchronize_session=False
    )
    db.query(models.Category).delete(synchronize_session=False)
    db.flush()

    categories = {}
    for data in CATEGORIES:
        category = models.Category(**data)
        db.add(category)
        categories[data["slug"]] = category
    db.flush()

    for slug, data in PRODUCTS:
        db.add(models.Product(category_id=categories[slug].id, **data))

    admin_created = False
    if admin_email:
        email = admin_email.lower()
        if not db.query(models.User).filter(models.User.email == email).first():
            if not admin_password:
                raise ValueError("--admin-password is required to create an admin")
            db.add(models.User(
                first_name="Admin",
                last_name="User",
                email=email,
                password_hash=hash_password(admin_password),
                role="admin",
            ))
            admin_created = True

    db.commit()
    return {"categories": len(CATEGORIES), "products": len(PRODUCTS), "admin_created": admin_created}


def run(database_url: str, admin_email: Optional[str] = None, admin_password: Optional[str] = None) -> dict:
    engine = make_engine(database_url)
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True)
    try:
        with SessionLocal() as db:
            return seed(db, admin_email, admin_password)
    finally:
        engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Seed the storefront catalog")
    parser.add_argument("--db", required=True, help="SQLAlchemy database URL")
    parser.add_argument("--admin-email", default=None)
    parser.add_argument("--admin-password", default=None)
    args = parser.parse_args()
    result = run(args.db, args.admin_email, args.admin_password)
    print(f"Seeded {result['categories']} categories and {result['products']} products"
          + (" and an admin user" if result["admin_created"] else ""))


if __name__ == "__main__":
    main()
