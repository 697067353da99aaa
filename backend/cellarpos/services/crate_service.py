# Overview: Service-layer operations for the crate deposit ledger.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CrateEntry, CrateTransactionType, Product
from ..validation import MAX_QUANTITY, NotFoundError, StateError, ValidationError, coerce_int
from cellarpos.time_utils import end_of_day, start_of_day, to_iso_date, to_utc_z
from .concurrency import lock_for_update, run_with_retry, WRITE_CONFLICT_ERRORS
from .pagination import paginate

"""
Crate Ledger Invariants (authoritative)

- Append-only: entries are never updated or deleted; corrections are new
  ``adjustment`` entries.
- The balance of a product is the ``balance`` of its highest-sequence entry,
  or 0 when it has none.
- Every append happens inside the same DB transaction as the sale/delivery/
  void that causes it, after the product row has been locked.
- The head read and the append are guarded twice: a FOR UPDATE lock on the
  latest entry, and the (product_id, sequence) unique constraint. A writer
  that computed its entry from a stale head fails on flush/commit and the
  whole operation is retried.
- Automated decreases (returns, voids) floor at 0. Manual adjustments floor
  at 0 too; the signed column leaves room for a credit policy later.
- balance_delta = balance - previous balance, so summing deltas from 0
  reproduces the stored balance.
"""


def _ledger_head(product_id: int) -> tuple[int, int]:
    """Return (current balance, next sequence) for a product, locking the head row."""
    latest = (
        lock_for_update(
            db.session.query(CrateEntry)
            .filter(CrateEntry.product_id == product_id)
            .order_by(CrateEntry.sequence.desc())
            .limit(1)
        )
        .first()
    )
    if latest is None:
        return 0, 1
    return latest.balance, latest.sequence + 1


def _append(
    *,
    product_id: int,
    transaction_type: CrateTransactionType,
    compute_balance,
    user_id: int,
    crates_received: int = 0,
    crates_returned: int = 0,
    sale_id: int | None = None,
    delivery_id: int | None = None,
    notes: str | None = None,
) -> CrateEntry:
    previous, sequence = _ledger_head(product_id)
    new_balance = compute_balance(previous)

    entry = CrateEntry(
        product_id=product_id,
        sequence=sequence,
        transaction_type=transaction_type,
        sale_id=sale_id,
        delivery_id=delivery_id,
        crates_received=crates_received,
        crates_returned=crates_returned,
        balance=new_balance,
        balance_delta=new_balance - previous,
        notes=notes,
        processed_by_user_id=user_id,
    )
    db.session.add(entry)
    db.session.flush()  # surfaces a sequence collision inside the caller's retry loop
    return entry


def _get_tracked_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    if not product.has_crate_tracking:
        raise StateError(
            "This product does not have crate tracking enabled",
            details={"product_id": product_id},
        )
    return product


def get_balance(product_id: int) -> int:
    latest = (
        db.session.query(CrateEntry.balance)
        .filter(CrateEntry.product_id == product_id)
        .order_by(CrateEntry.sequence.desc())
        .limit(1)
        .scalar()
    )
    return latest if latest is not None else 0


# =============================================================================
# In-transaction hooks (called by sale / delivery / void handlers; no commit)
# =============================================================================


def record_sale(*, product: Product, quantity: int, sale, user_id: int) -> CrateEntry:
    """A sale dispenses full crates the customer must bring back: owed balance grows."""
    return _append(
        product_id=product.id,
        transaction_type=CrateTransactionType.SALE,
        compute_balance=lambda previous: previous + quantity,
        user_id=user_id,
        sale_id=sale.id,
        notes=f"Sale of {quantity} crates - Receipt: {sale.receipt_number}",
    )


def record_delivery(*, product: Product, quantity: int, delivery, user_id: int) -> CrateEntry:
    """Full crates received from the supplier are observed but do not change what is owed."""
    return _append(
        product_id=product.id,
        transaction_type=CrateTransactionType.DELIVERY,
        compute_balance=lambda previous: previous,
        user_id=user_id,
        crates_received=quantity,
        delivery_id=delivery.id,
        notes=f"Delivery received {quantity} crates - {delivery.delivery_number}",
    )


def reverse_sale(*, sale, user_id: int, reason: str) -> list[CrateEntry]:
    """
    Append one compensating adjustment per sale-type entry the sale created.

    Driven by the sale's own ledger entries rather than the product's current
    tracking flag, so a void undoes exactly what the sale applied.
    """
    originals = (
        db.session.query(CrateEntry)
        .filter(
            CrateEntry.sale_id == sale.id,
            CrateEntry.transaction_type == CrateTransactionType.SALE,
        )
        .order_by(CrateEntry.id.asc())
        .all()
    )

    reversals = []
    for original in originals:
        owed = original.balance_delta
        reversals.append(
            _append(
                product_id=original.product_id,
                transaction_type=CrateTransactionType.ADJUSTMENT,
                compute_balance=lambda previous, owed=owed: max(0, previous - owed),
                user_id=user_id,
                sale_id=sale.id,
                notes=f"Void sale {sale.receipt_number} - {reason}",
            )
        )
    return reversals


# =============================================================================
# Standalone ledger operations (own transaction)
# =============================================================================


def record_return(*, product_id, crates_returned, user_id: int, notes: str | None = None) -> CrateEntry:
    """
    Record empty crates handed back to the supplier.

    New balance = max(0, previous - crates_returned).

    Raises:
        ValidationError: crates_returned missing or not a positive integer
        NotFoundError: product does not exist
        StateError: product does not have crate tracking enabled
    """
    if product_id is None or crates_returned is None:
        raise ValidationError("Product ID and crates returned (greater than 0) are required")
    product_id = coerce_int(product_id, "product_id")
    count = coerce_int(crates_returned, "crates_returned")
    if count <= 0:
        raise ValidationError("Product ID and crates returned (greater than 0) are required")
    if count > MAX_QUANTITY:
        raise ValidationError(f"crates_returned cannot exceed {MAX_QUANTITY}")
    note = (notes.strip() if isinstance(notes, str) else "") or f"Returned {count} empty crates"

    def _op():
        _get_tracked_product(product_id)
        entry = _append(
            product_id=product_id,
            transaction_type=CrateTransactionType.RETURN,
            compute_balance=lambda previous: max(0, previous - count),
            user_id=user_id,
            crates_returned=count,
            notes=note,
        )
        db.session.commit()
        return entry

    entry = run_with_retry(_op, retry_on=WRITE_CONFLICT_ERRORS)
    current_app.logger.info(
        "Crate return recorded: product=%s returned=%s balance=%s", product_id, count, entry.balance
    )
    return entry


def adjust_balance(*, product_id, adjustment, user_id: int, notes: str | None) -> CrateEntry:
    """
    Manual correction of the owed balance.

    New balance = max(0, previous + adjustment). crates_received /
    crates_returned mirror the sign of the adjustment for the audit trail.
    Notes are mandatory.
    """
    if product_id is None or adjustment is None:
        raise ValidationError("Product ID and adjustment value (non-zero) are required")
    product_id = coerce_int(product_id, "product_id")
    delta = coerce_int(adjustment, "adjustment")
    if delta == 0:
        raise ValidationError("Product ID and adjustment value (non-zero) are required")
    if abs(delta) > MAX_QUANTITY:
        raise ValidationError(f"adjustment must be between -{MAX_QUANTITY} and {MAX_QUANTITY}")
    note = notes.strip() if isinstance(notes, str) else ""
    if not note:
        raise ValidationError("Notes are required for manual adjustments")

    def _op():
        _get_tracked_product(product_id)
        entry = _append(
            product_id=product_id,
            transaction_type=CrateTransactionType.ADJUSTMENT,
            compute_balance=lambda previous: max(0, previous + delta),
            user_id=user_id,
            crates_received=delta if delta > 0 else 0,
            crates_returned=-delta if delta < 0 else 0,
            notes=note,
        )
        db.session.commit()
        return entry

    entry = run_with_retry(_op, retry_on=WRITE_CONFLICT_ERRORS)
    current_app.logger.info(
        "Crate balance adjusted: product=%s adjustment=%s balance=%s", product_id, delta, entry.balance
    )
    return entry


# =============================================================================
# Reads
# =============================================================================


def get_history(product_id: int, page: int | None = None, page_size: int | None = None) -> dict:
    """Ledger entries for one product, newest first, with the current balance."""
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    base_query = (
        db.session.query(CrateEntry)
        .filter(CrateEntry.product_id == product_id)
        .order_by(CrateEntry.sequence.desc())
    )
    rows, pagination = paginate(base_query, page, page_size)

    return {
        "product": product.to_summary(),
        "crate_history": [r.to_dict() for r in rows],
        "current_balance": get_balance(product_id),
        "pagination": pagination,
    }


def get_all_balances() -> list[dict]:
    """Current balance and last movement for every active crate-tracked product."""
    head = (
        db.session.query(
            CrateEntry.product_id.label("product_id"),
            func.max(CrateEntry.sequence).label("max_sequence"),
        )
        .group_by(CrateEntry.product_id)
        .subquery()
    )

    rows = (
        db.session.query(Product, CrateEntry)
        .outerjoin(head, head.c.product_id == Product.id)
        .outerjoin(
            CrateEntry,
            (CrateEntry.product_id == Product.id) & (CrateEntry.sequence == head.c.max_sequence),
        )
        .filter(Product.has_crate_tracking.is_(True), Product.is_active.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

    return [
        {
            "product_id": product.id,
            "product_name": product.name,
            "current_balance": latest.balance if latest else 0,
            "last_updated": to_utc_z(latest.created_at) if latest else None,
        }
        for product, latest in rows
    ]


def get_summary(start_date: date | None = None, end_date: date | None = None) -> dict:
    """
    Per-product aggregates over entries in an inclusive date range.

    - total_received / total_returned: sums of the observational columns
    - net_adjustment: net balance effect of adjustment entries (manual
      corrections and void reversals)
    - current_balance: balance of the latest entry inside the range
    """
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    q = db.session.query(CrateEntry, Product.name).join(Product, Product.id == CrateEntry.product_id)
    if start_date is not None:
        q = q.filter(CrateEntry.created_at >= start_of_day(start_date))
    if end_date is not None:
        q = q.filter(CrateEntry.created_at <= end_of_day(end_date))

    rows = q.order_by(CrateEntry.product_id.asc(), CrateEntry.sequence.asc()).all()

    summaries: dict[int, dict] = {}
    for entry, product_name in rows:
        data = summaries.setdefault(entry.product_id, {
            "product_id": entry.product_id,
            "product_name": product_name,
            "total_received": 0,
            "total_returned": 0,
            "net_adjustment": 0,
            "current_balance": 0,
            "entries": 0,
        })
        data["total_received"] += entry.crates_received
        data["total_returned"] += entry.crates_returned
        if entry.transaction_type == CrateTransactionType.ADJUSTMENT:
            data["net_adjustment"] += entry.balance_delta
        # rows are ascending by sequence, so the last one seen is the latest
        data["current_balance"] = entry.balance
        data["entries"] += 1

    return {
        "summary": sorted(summaries.values(), key=lambda s: (s["product_name"], s["product_id"])),
        "total_records": len(rows),
        "start_date": to_iso_date(start_date),
        "end_date": to_iso_date(end_date),
    }


def replay_balance(product_id: int) -> dict:
    """
    Re-derive a product's balance by summing entry deltas from 0.

    Also checks that sequences are contiguous and that each entry's stored
    balance equals the running total at that point.
    """
    entries = (
        db.session.query(CrateEntry)
        .filter(CrateEntry.product_id == product_id)
        .order_by(CrateEntry.sequence.asc())
        .all()
    )

    running = 0
    problems = []
    for expected_sequence, entry in enumerate(entries, start=1):
        if entry.sequence != expected_sequence:
            problems.append(f"sequence gap: expected {expected_sequence}, found {entry.sequence}")
        running += entry.balance_delta
        if running != entry.balance:
            problems.append(
                f"entry {entry.id} (sequence {entry.sequence}) stores {entry.balance}, replay gives {running}"
            )

    stored = entries[-1].balance if entries else 0
    return {
        "product_id": product_id,
        "entries": len(entries),
        "stored_balance": stored,
        "replayed_balance": running,
        "consistent": not problems and running == stored,
        "problems": problems,
    }


def verify_ledger() -> list[dict]:
    """Replay every product that has ledger entries; returns one report per product."""
    product_ids = [
        pid for (pid,) in db.session.query(CrateEntry.product_id).distinct().order_by(CrateEntry.product_id)
    ]
    return [replay_balance(pid) for pid in product_ids]
