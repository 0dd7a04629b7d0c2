# Overview: Catalog projection access; product lookup, pricing inputs and stock cache.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import CardProduct
from ..money import to_money
from .errors import NotFound, ValidationError


def get_product(tenant_id: int, product_id: int) -> CardProduct:
    product = db.session.query(CardProduct).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise NotFound("Product not found", details={"product_id": product_id})
    return product


def create_product(
    *,
    tenant_id: int,
    name: str,
    unit_price,
    tax_rate="0",
    min_quantity: int = 1,
    max_quantity: int = 1000,
    currency: str = "SAR",
    name_ar: str | None = None,
    is_active: bool = True,
) -> CardProduct:
    """
    Register a catalog product locally.

    The catalog service owns products; this is used for seeding and tests.
    """
    if not name or not name.strip():
        raise ValidationError("name is required")
    try:
        price = to_money(unit_price)
        rate = Decimal(str(tax_rate))
    except (ValueError, ArithmeticError):
        raise ValidationError("unit_price and tax_rate must be numeric")
    if price < 0 or rate < 0:
        raise ValidationError("unit_price and tax_rate must not be negative")
    if min_quantity < 1 or max_quantity < min_quantity:
        raise ValidationError("quantity bounds are invalid")

    product = CardProduct(
        tenant_id=tenant_id,
        name=name.strip(),
        name_ar=name_ar,
        unit_price=price,
        tax_rate=rate,
        currency=currency,
        min_quantity=min_quantity,
        max_quantity=max_quantity,
        is_active=is_active,
        is_available=False,
        stock_count=0,
    )
    db.session.add(product)
    db.session.commit()
    return product


def set_stock_count(product_id: int, count: int) -> None:
    """Write the cached counter; callers own the transaction."""
    db.session.query(CardProduct).filter_by(id=product_id).update(
        {"stock_count": count, "is_available": count > 0},
        synchronize_session=False,
    )
