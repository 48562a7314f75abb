"""
smartcrm/seed.py

Bootstrap data.

Rules:
- Safe to run multiple times (idempotent).
- Products are matched by SKU; prices are kept in sync with the defaults below.
- The admin bootstrap never overwrites an existing profile's password.
"""

from __future__ import annotations

from decimal import Decimal

from .extensions import db
from .models import Product, Profile


DEFAULT_PRODUCTS = [
    # sku, name, category, unit, base_price, retail_price
    ("KNX-ACT-8", "Актуатор KNX 8-канальный", "Автоматика", "шт", Decimal("180.00"), Decimal("252.00")),
    ("KNX-PSU-640", "Блок питания KNX 640 мА", "Автоматика", "шт", Decimal("95.00"), Decimal("133.00")),
    ("KNX-BTN-4", "Кнопочный выключатель KNX 4-клавишный", "Управление", "шт", Decimal("60.00"), Decimal("90.00")),
    ("SNS-MOTION", "Датчик присутствия", "Датчики", "шт", Decimal("45.00"), Decimal("67.50")),
    ("SNS-LEAK", "Датчик протечки", "Датчики", "шт", Decimal("12.00"), Decimal("18.00")),
    ("VLV-WATER", "Кран с электроприводом", "Защита от протечек", "шт", Decimal("70.00"), Decimal("98.00")),
    ("CAB-KNX-100", "Кабель KNX 2x2x0.8, бухта 100 м", "Кабель", "бухта", Decimal("55.00"), Decimal("77.00")),
    ("SRV-MOUNT", "Монтаж устройства", "Работы", "шт", Decimal("0.00"), Decimal("25.00")),
    ("SRV-PROG", "Программирование сценария", "Работы", "шт", Decimal("0.00"), Decimal("40.00")),
]


def seed_catalog() -> int:
    """
    Create or refresh the default catalog. Returns the number of products created.

    Idempotent behavior:
    - If a product with the SKU exists, its name/category/prices are refreshed.
    - Archived products stay archived.
    """
    created = 0
    for sku, name, category, unit, base_price, retail_price in DEFAULT_PRODUCTS:
        product = Product.query.filter_by(sku=sku).first()
        if product:
            product.name = name
            product.category = category
            product.unit = unit
            product.base_price = base_price
            product.retail_price = retail_price
            continue

        db.session.add(
            Product(
                sku=sku,
                name=name,
                category=category,
                unit=unit,
                base_price=base_price,
                retail_price=retail_price,
            )
        )
        created += 1

    db.session.commit()
    return created


def create_admin(username: str, password: str, full_name: str = "Администратор") -> tuple[Profile, bool]:
    """Create the admin profile if the username is free. Returns (profile, created)."""
    username = (username or "").strip()
    if not username or not password:
        raise ValueError("Username and password are required.")

    profile = Profile.query.filter_by(username=username).first()
    if profile:
        return profile, False

    profile = Profile(username=username, full_name=full_name, role="admin", is_active=True)
    profile.set_password(password)
    db.session.add(profile)
    db.session.commit()
    return profile, True
