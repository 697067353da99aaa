# Overview: Service-layer operations for document numbers; allocates per-day sequences.

from __future__ import annotations

from datetime import date

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


RECEIPT = "RECEIPT"
DELIVERY = "DELIVERY"

PREFIXES = {
    RECEIPT: "RCP",
    DELIVERY: "DEL",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_document_number(prefix: str, business_date: date, number: int, pad: int = 3) -> str:
    """e.g. RCP-20260119-007. Numbers past 999 simply widen."""
    return f"{prefix}-{business_date:%Y%m%d}-{number:0{pad}d}"


def next_document_number(*, document_type: str, business_date: date) -> str:
    """
    Allocate the next number for (document_type, business_date).

    Must be called inside the caller's transaction: the increment commits or
    rolls back together with the document that uses it. The counter row is
    updated in place (``next_number = next_number + 1``), which takes a row
    lock on engines that support it. The first allocation of a day inserts
    the row; if a concurrent transaction inserted it first, the flush raises
    IntegrityError and the caller's run_with_retry starts over.
    """
    if document_type not in PREFIXES:
        raise DocumentSequenceError(f"Unknown document_type {document_type!r}")
    if business_date is None:
        raise DocumentSequenceError("business_date is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.business_date == business_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, business_date=business_date)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, business_date=business_date, next_number=2))
        db.session.flush()
        next_num = 1

    return format_document_number(PREFIXES[document_type], business_date, next_num)
