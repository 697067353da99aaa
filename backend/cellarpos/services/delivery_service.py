# Overview: Service-layer operations for supplier deliveries; stock increments and crate observations.

"""
Delivery Service

Receiving a delivery writes the delivery document, its lines, the stock
increments and the crate ledger observations in one transaction.

Lines are immutable after creation. Only header fields can be edited, and
editing them never touches stock or the crate ledger.
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import Delivery, DeliveryItem, Product
from ..validation import (
    MAX_PRICE_CENTS,
    MAX_QUANTITY,
    NotFoundError,
    StateError,
    ValidationError,
    coerce_date,
    coerce_int,
)
from cellarpos.time_utils import business_date
from . import crate_service
from .concurrency import lock_for_update, run_with_retry, WRITE_CONFLICT_ERRORS
from .document_service import DELIVERY, next_document_number
from .pagination import paginate


DELIVERY_EDITABLE_FIELDS = {"supplier", "delivery_date", "notes", "is_received"}


def _clean_supplier(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("supplier is required")
    supplier = value.strip()
    if not 2 <= len(supplier) <= 100:
        raise ValidationError("supplier must be between 2 and 100 characters")
    return supplier


def _clean_notes(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("notes must be a string")
    return value.strip() or None


def _normalize_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Delivery must include at least one item")

    normalized = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index} must be an object")
        if raw.get("product_id") is None or raw.get("quantity") is None:
            raise ValidationError(f"Item {index}: product_id and quantity are required")

        product_id = coerce_int(raw["product_id"], f"items[{index}].product_id")
        if product_id <= 0:
            raise ValidationError(f"items[{index}].product_id must be a positive integer")

        quantity = coerce_int(raw["quantity"], f"items[{index}].quantity")
        if not 1 <= quantity <= MAX_QUANTITY:
            raise ValidationError(f"items[{index}].quantity must be between 1 and {MAX_QUANTITY}")

        unit_cost = raw.get("unit_cost_cents")
        if unit_cost is not None:
            unit_cost = coerce_int(unit_cost, f"items[{index}].unit_cost_cents")
            if unit_cost < 0 or unit_cost > MAX_PRICE_CENTS:
                raise ValidationError(f"items[{index}].unit_cost_cents must be between 0 and {MAX_PRICE_CENTS}")

        expiry = raw.get("expiry_date")
        if expiry not in (None, ""):
            expiry = coerce_date(expiry, f"items[{index}].expiry_date")
        else:
            expiry = None

        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_cost_cents": unit_cost,
            "expiry_date": expiry,
        })
    return normalized


def create_delivery(*, supplier, items, user_id: int, delivery_date=None, notes=None) -> Delivery:
    """
    Receive a supplier delivery.

    unit_cost_cents defaults to the product's cost price. The delivery date
    defaults to today and scopes the DEL-YYYYMMDD-NNN number.

    Raises:
        ValidationError: malformed header or items
        NotFoundError: an item references a missing product
        StateError: an item references an inactive product
    """
    supplier = _clean_supplier(supplier)
    lines = _normalize_items(items)
    notes = _clean_notes(notes)
    if delivery_date in (None, ""):
        delivered_on = business_date()
    else:
        delivered_on = coerce_date(delivery_date, "delivery_date")

    def _op():
        product_ids = sorted({line["product_id"] for line in lines})
        products = (
            lock_for_update(
                db.session.query(Product)
                .filter(Product.id.in_(product_ids))
                .order_by(Product.id.asc())
            )
            .all()
        )
        by_id = {p.id: p for p in products}
        for product_id in product_ids:
            product = by_id.get(product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
            if not product.is_active:
                raise StateError(f"Product {product.name} is not active", details={"product_id": product_id})

        delivery_number = next_document_number(document_type=DELIVERY, business_date=delivered_on)

        delivery = Delivery(
            delivery_number=delivery_number,
            supplier=supplier,
            delivery_date=delivered_on,
            notes=notes,
            is_received=True,
            received_by_user_id=user_id,
            total_cost_cents=0,
        )
        db.session.add(delivery)
        db.session.flush()

        total_cost = 0
        for position, line in enumerate(lines, start=1):
            product = by_id[line["product_id"]]
            quantity = line["quantity"]
            unit_cost = line["unit_cost_cents"]
            if unit_cost is None:
                unit_cost = product.cost_price_cents
            line_total = unit_cost * quantity

            delivery.items.append(DeliveryItem(
                product_id=product.id,
                position=position,
                quantity=quantity,
                unit_cost_cents=unit_cost,
                line_total_cents=line_total,
                expiry_date=line["expiry_date"],
            ))

            product.current_stock += quantity

            if product.has_crate_tracking:
                crate_service.record_delivery(
                    product=product, quantity=quantity, delivery=delivery, user_id=user_id
                )

            total_cost += line_total

        delivery.total_cost_cents = total_cost

        db.session.commit()
        return delivery

    delivery = run_with_retry(_op, retry_on=WRITE_CONFLICT_ERRORS)
    current_app.logger.info(
        "Delivery received: number=%s supplier=%r total_cents=%s lines=%s user=%s",
        delivery.delivery_number, delivery.supplier, delivery.total_cost_cents, len(lines), user_id,
    )
    return delivery


def update_delivery(delivery_id: int, payload: dict) -> Delivery:
    """Edit header fields only; lines, stock and crate entries are untouched."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for key in payload:
        if key not in DELIVERY_EDITABLE_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")

    patch = {}
    if "supplier" in payload:
        patch["supplier"] = _clean_supplier(payload["supplier"])
    if "delivery_date" in payload:
        patch["delivery_date"] = coerce_date(payload["delivery_date"], "delivery_date")
    if "notes" in payload:
        patch["notes"] = _clean_notes(payload["notes"])
    if "is_received" in payload:
        if not isinstance(payload["is_received"], bool):
            raise ValidationError("is_received must be a boolean")
        patch["is_received"] = payload["is_received"]

    def _op():
        delivery = lock_for_update(db.session.query(Delivery).filter_by(id=delivery_id)).first()
        if delivery is None:
            raise NotFoundError("Delivery not found", details={"delivery_id": delivery_id})
        for key, value in patch.items():
            setattr(delivery, key, value)
        db.session.commit()
        return delivery

    return run_with_retry(_op)


def get_delivery(delivery_id: int) -> Delivery:
    delivery = db.session.query(Delivery).filter_by(id=delivery_id).first()
    if delivery is None:
        raise NotFoundError("Delivery not found", details={"delivery_id": delivery_id})
    return delivery


def list_deliveries(
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    supplier: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    base_query = db.session.query(Delivery)
    if start_date is not None:
        base_query = base_query.filter(Delivery.delivery_date >= start_date)
    if end_date is not None:
        base_query = base_query.filter(Delivery.delivery_date <= end_date)
    if supplier:
        base_query = base_query.filter(Delivery.supplier.ilike(f"%{supplier.strip()}%"))

    base_query = base_query.order_by(Delivery.delivery_date.desc(), Delivery.id.desc())
    deliveries, pagination = paginate(base_query, page, per_page)

    return {
        "items": [d.to_dict(include_items=False) for d in deliveries],
        "count": len(deliveries),
        "pagination": pagination,
    }


def list_suppliers() -> list[str]:
    """Distinct supplier names, sorted case-insensitively."""
    rows = db.session.query(Delivery.supplier).distinct().all()
    return sorted((supplier for (supplier,) in rows), key=str.lower)
