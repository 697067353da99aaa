from __future__ import annotations

from ..extensions import db
from cellarpos.time_utils import to_utc_z, utcnow
from .enums import CrateTransactionType, enum_column


class CrateEntry(db.Model):
    """
    Crate deposit ledger entry (append-only).

    INVARIANTS:
    - Rows are never updated or deleted.
    - ``sequence`` is 1-based and contiguous per product; the current balance
      of a product is the ``balance`` of its highest-sequence entry (0 if none).
    - ``balance_delta`` is ``balance`` minus the previous entry's balance, so
      replaying deltas from 0 reproduces the latest balance exactly.
    - (product_id, sequence) is unique: two writers that computed a new entry
      from the same stale latest row cannot both commit.

    sale_id / delivery_id are weak references kept for traceability only.
    """
    __tablename__ = "crate_tracking"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sequence", name="uq_crate_tracking_product_sequence"),
        db.CheckConstraint("crates_received >= 0", name="ck_crate_tracking_received_non_negative"),
        db.CheckConstraint("crates_returned >= 0", name="ck_crate_tracking_returned_non_negative"),
        db.Index("ix_crate_tracking_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    transaction_type = db.Column(
        enum_column(CrateTransactionType, "crate_transaction_type"),
        nullable=False,
        index=True,
    )

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=True, index=True)

    crates_received = db.Column(db.Integer, nullable=False, default=0)
    crates_returned = db.Column(db.Integer, nullable=False, default=0)

    # Crates currently owed to the supplier after this entry
    balance = db.Column(db.Integer, nullable=False)
    balance_delta = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")
    processed_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {"id": self.product.id, "name": self.product.name} if self.product else None,
            "sequence": self.sequence,
            "transaction_type": self.transaction_type.value if self.transaction_type else None,
            "sale_id": self.sale_id,
            "delivery_id": self.delivery_id,
            "crates_received": self.crates_received,
            "crates_returned": self.crates_returned,
            "balance": self.balance,
            "balance_delta": self.balance_delta,
            "notes": self.notes,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_by": self.processed_by.to_summary() if self.processed_by else None,
            "created_at": to_utc_z(self.created_at),
        }
