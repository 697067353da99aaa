# backend/cellarpos/services/products_service.py
"""
Products Service

- list_products: active products with category / name search / low-stock filters
- create_product / update_product: validated patch dicts, barcode uniqueness
- delete_product: retire or delete according to lifecycle_service

Stock is only set directly at creation. Afterwards it moves exclusively through
sales, voids and deliveries so the stock history stays explainable.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, ProductCategory
from ..validation import (
    ConflictError,
    FieldPolicy,
    NotFoundError,
    coerce_enum,
    enforce_rules_product,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import Disposal, decide_disposal, has_blocking_references, product_references


PRODUCT_CREATE_POLICY = FieldPolicy(
    writable=frozenset({
        "name", "category", "unit_type",
        "cost_price_cents", "selling_price_cents",
        "current_stock", "minimum_stock",
        "description", "image_url", "barcode",
        "is_active", "has_crate_tracking",
    }),
    required=frozenset({"name", "category", "unit_type", "cost_price_cents", "selling_price_cents"}),
)

# stock moves only through sales, voids and deliveries after creation
PRODUCT_UPDATE_POLICY = PRODUCT_CREATE_POLICY.without("current_stock")


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        setattr(p, k, v)


def _ensure_barcode_free(barcode: str | None, exclude_id: int | None = None) -> None:
    if not barcode:
        return
    q = db.session.query(Product).filter(Product.barcode == barcode)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first():
        raise ConflictError("Product with this barcode already exists", details={"barcode": barcode})


def list_products(
    *,
    category=None,
    search: str | None = None,
    low_stock: bool = False,
) -> list[Product]:
    """Active products ordered by name."""
    q = db.session.query(Product).filter(Product.is_active.is_(True))

    if category not in (None, ""):
        q = q.filter(Product.category == coerce_enum(ProductCategory, category, "category"))
    if search:
        q = q.filter(Product.name.ilike(f"%{search.strip()}%"))
    if low_stock:
        q = q.filter(Product.current_stock <= Product.minimum_stock)

    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    p = db.session.query(Product).filter(Product.id == product_id).first()
    if p is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return p


def create_product(payload: dict) -> Product:
    """
    Create a product from a client payload.

    Raises:
        ValidationError: payload fails column or business-rule validation
        ConflictError: barcode already used by another product
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
    enforce_rules_product(patch)
    _ensure_barcode_free(patch.get("barcode"))

    p = Product()
    apply_product_patch(p, patch)
    db.session.add(p)
    try:
        db.session.commit()
    except IntegrityError:
        # barcode claimed by a concurrent insert after the check above
        db.session.rollback()
        raise ConflictError("Product with this barcode already exists", details={"barcode": patch.get("barcode")})

    current_app.logger.info("Product created: id=%s name=%r", p.id, p.name)
    return p


def update_product(product_id: int, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        p = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if p is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        if "barcode" in patch and patch["barcode"] != p.barcode:
            _ensure_barcode_free(patch["barcode"], exclude_id=p.id)
        apply_product_patch(p, patch)
        db.session.commit()
        return p

    try:
        return run_with_retry(_op)
    except IntegrityError:
        raise ConflictError("Product with this barcode already exists", details={"barcode": patch.get("barcode")})


def delete_product(product_id: int) -> dict:
    """
    Retire a referenced product, delete an unreferenced one.

    Returns:
        {"action": "retired" | "deleted", "product_id": ...}
    """
    def _op():
        p = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if p is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})

        references = product_references(p.id)
        action = decide_disposal(has_blocking_references(references))
        if action == Disposal.RETIRE:
            p.is_active = False
        else:
            db.session.delete(p)
        db.session.commit()
        return action

    action = run_with_retry(_op)
    current_app.logger.info("Product %s: id=%s", action.value, product_id)
    return {"action": action.value, "product_id": product_id}
