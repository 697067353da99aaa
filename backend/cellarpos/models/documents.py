from __future__ import annotations

from ..extensions import db
from cellarpos.time_utils import utcnow


class DocumentSequence(db.Model):
    """
    Per-day counter backing receipt and delivery numbers.

    One row per (document_type, business_date). Allocation is an atomic
    ``UPDATE ... SET next_number = next_number + 1`` so concurrent sales on
    the same day never read the same value.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "business_date", name="uq_doc_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
