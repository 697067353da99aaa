# Overview: Service-layer operations for sales; stock, receipt numbers and crate ledger in one transaction.

"""
Sales Service - one-shot sale recording and voiding

A sale is written in a single transaction:
    validate input -> lock products (ascending id) -> check stock per product
    -> allocate receipt number -> insert sale + items -> decrement stock
    -> append crate ledger entries -> commit

Any failure rolls the whole thing back; nothing partial is ever visible.
Voiding reverses stock and crate effects with new rows and never edits the
original sale lines.
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import PaymentMethod, Product, Sale, SaleItem
from ..validation import (
    InsufficientStockError,
    NotFoundError,
    StateError,
    ValidationError,
    MAX_PRICE_CENTS,
    MAX_QUANTITY,
    coerce_enum,
    coerce_int,
)
from cellarpos.time_utils import business_date, end_of_day, start_of_day, utcnow
from . import crate_service
from .concurrency import lock_for_update, run_with_retry, WRITE_CONFLICT_ERRORS
from .document_service import RECEIPT, next_document_number
from .pagination import paginate


def _normalize_items(items) -> list[dict]:
    """Eager validation of line input; nothing is read or written before this passes."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must include at least one item")

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

        unit_price = raw.get("unit_price_cents")
        if unit_price is not None:
            unit_price = coerce_int(unit_price, f"items[{index}].unit_price_cents")
            if not 0 <= unit_price <= MAX_PRICE_CENTS:
                raise ValidationError(f"items[{index}].unit_price_cents must be between 0 and {MAX_PRICE_CENTS}")

        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
        })
    return normalized


def _clean_text(value, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not value:
        return None
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value


def _lock_products(product_ids) -> dict[int, Product]:
    """Lock every referenced product in ascending id order so concurrent sales cannot deadlock."""
    products = (
        lock_for_update(
            db.session.query(Product)
            .filter(Product.id.in_(sorted(product_ids)))
            .order_by(Product.id.asc())
        )
        .all()
    )
    by_id = {p.id: p for p in products}

    for product_id in sorted(product_ids):
        product = by_id.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        if not product.is_active:
            raise StateError(f"Product {product.name} is not active", details={"product_id": product_id})
    return by_id


def _validate_on_hand(lines: list[dict], products: dict[int, Product]) -> None:
    product_totals: dict[int, int] = {}
    for line in lines:
        product_totals[line["product_id"]] = product_totals.get(line["product_id"], 0) + line["quantity"]

    for product_id, qty in sorted(product_totals.items()):
        product = products[product_id]
        if product.current_stock < qty:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}",
                details={
                    "product_id": product_id,
                    "requested_quantity": qty,
                    "available": product.current_stock,
                },
            )


def create_sale(
    *,
    items,
    payment_method,
    user_id: int,
    customer_name=None,
    customer_contact=None,
    notes=None,
) -> Sale:
    """
    Record a completed sale.

    Raises:
        ValidationError: malformed items or payment method
        NotFoundError: an item references a missing product
        StateError: an item references an inactive product
        InsufficientStockError: combined quantity exceeds current stock
    """
    lines = _normalize_items(items)
    if payment_method in (None, ""):
        raise ValidationError("payment_method is required")
    method = coerce_enum(PaymentMethod, payment_method, "payment_method")
    customer_name = _clean_text(customer_name, "customer_name", 100)
    customer_contact = _clean_text(customer_contact, "customer_contact", 20)
    notes = _clean_text(notes, "notes")

    def _op():
        products = _lock_products({line["product_id"] for line in lines})
        _validate_on_hand(lines, products)

        receipt_number = next_document_number(document_type=RECEIPT, business_date=business_date())

        sale = Sale(
            receipt_number=receipt_number,
            payment_method=method,
            customer_name=customer_name,
            customer_contact=customer_contact,
            notes=notes,
            sold_by_user_id=user_id,
            total_amount_cents=0,
            total_cost_cents=0,
            profit_cents=0,
        )
        db.session.add(sale)
        db.session.flush()

        total_amount = 0
        total_cost = 0
        for position, line in enumerate(lines, start=1):
            product = products[line["product_id"]]
            quantity = line["quantity"]
            unit_price = line["unit_price_cents"]
            if unit_price is None:
                unit_price = product.selling_price_cents
            unit_cost = product.cost_price_cents

            line_total = unit_price * quantity
            line_cost = unit_cost * quantity

            sale.items.append(SaleItem(
                product_id=product.id,
                position=position,
                quantity=quantity,
                unit_price_cents=unit_price,
                unit_cost_cents=unit_cost,
                line_total_cents=line_total,
                line_cost_cents=line_cost,
                line_profit_cents=line_total - line_cost,
            ))

            product.current_stock -= quantity

            if product.has_crate_tracking:
                crate_service.record_sale(product=product, quantity=quantity, sale=sale, user_id=user_id)

            total_amount += line_total
            total_cost += line_cost

        sale.total_amount_cents = total_amount
        sale.total_cost_cents = total_cost
        sale.profit_cents = total_amount - total_cost

        db.session.commit()
        return sale

    sale = run_with_retry(_op, retry_on=WRITE_CONFLICT_ERRORS)
    current_app.logger.info(
        "Sale recorded: receipt=%s total_cents=%s lines=%s user=%s",
        sale.receipt_number, sale.total_amount_cents, len(lines), user_id,
    )
    return sale


def void_sale(sale_id: int, user_id: int, reason) -> Sale:
    """
    Void a recorded sale and reverse its stock and crate effects.

    Stock is restored per line. Every sale-type crate entry the sale created
    gets a compensating adjustment entry (floored at zero).
    """
    reason = reason.strip() if isinstance(reason, str) else None
    if not reason:
        raise ValidationError("Void reason is required")

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})

        if sale.is_voided:
            raise StateError("Sale is already voided", details={"sale_id": sale_id})

        product_ids = {item.product_id for item in sale.items}
        products = (
            lock_for_update(
                db.session.query(Product)
                .filter(Product.id.in_(sorted(product_ids)))
                .order_by(Product.id.asc())
            )
            .all()
        )
        by_id = {p.id: p for p in products}

        for item in sale.items:
            product = by_id.get(item.product_id)
            if product is not None:
                product.current_stock += item.quantity

        crate_service.reverse_sale(sale=sale, user_id=user_id, reason=reason)

        sale.is_voided = True
        sale.void_reason = reason
        sale.voided_at = utcnow()
        sale.voided_by_user_id = user_id

        db.session.commit()
        return sale

    sale = run_with_retry(_op, retry_on=WRITE_CONFLICT_ERRORS)
    current_app.logger.info("Sale voided: receipt=%s user=%s reason=%r", sale.receipt_number, user_id, reason)
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    payment_method=None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Non-voided sales, newest first, with optional date range and payment filter."""
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    base_query = db.session.query(Sale).filter(Sale.is_voided.is_(False))

    if start_date is not None:
        base_query = base_query.filter(Sale.created_at >= start_of_day(start_date))
    if end_date is not None:
        base_query = base_query.filter(Sale.created_at <= end_of_day(end_date))
    if payment_method not in (None, ""):
        method = coerce_enum(PaymentMethod, payment_method, "payment_method")
        base_query = base_query.filter(Sale.payment_method == method)

    base_query = base_query.order_by(Sale.created_at.desc(), Sale.id.desc())
    sales, pagination = paginate(base_query, page, per_page)

    return {
        "items": [s.to_dict(include_items=False) for s in sales],
        "count": len(sales),
        "pagination": pagination,
    }
