from __future__ import annotations

from ..extensions import db
from cellarpos.time_utils import to_utc_z, utcnow
from .enums import PaymentMethod, enum_column


class Sale(db.Model):
    """
    Sale document.

    Immutable once created except for the void transition: a voided sale keeps
    its lines and totals, and its stock and crate effects are reversed by
    compensating rows rather than by editing history.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_voided_created", "is_voided", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "RCP-20260119-001")
    receipt_number = db.Column(db.String(32), nullable=False, unique=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(enum_column(PaymentMethod, "payment_method"), nullable=False, index=True)

    customer_name = db.Column(db.String(100), nullable=True)
    customer_contact = db.Column(db.String(20), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Void audit trail
    is_voided = db.Column(db.Boolean, nullable=False, default=False, index=True)
    void_reason = db.Column(db.Text, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sold_by = db.relationship("User", foreign_keys=[sold_by_user_id])
    voided_by = db.relationship("User", foreign_keys=[voided_by_user_id])
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.position",
        cascade="all, delete-orphan",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "total_amount_cents": self.total_amount_cents,
            "total_cost_cents": self.total_cost_cents,
            "profit_cents": self.profit_cents,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "customer_name": self.customer_name,
            "customer_contact": self.customer_contact,
            "notes": self.notes,
            "is_voided": self.is_voided,
            "void_reason": self.void_reason,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "sold_by_user_id": self.sold_by_user_id,
            "sold_by": self.sold_by.to_summary() if self.sold_by else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Individual line items on a sale document."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=1)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # Snapshot of product cost at time of sale
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    line_cost_cents = db.Column(db.Integer, nullable=False)
    line_profit_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "position": self.position,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "line_cost_cents": self.line_cost_cents,
            "line_profit_cents": self.line_profit_cents,
        }
