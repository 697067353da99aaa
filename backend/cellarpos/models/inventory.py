from __future__ import annotations

from ..extensions import db
from cellarpos.time_utils import to_utc_z, to_iso_date, utcnow
from .enums import ProductCategory, UnitType, enum_column


class Product(db.Model):
    """
    Product master data.

    Stock is a mutable counter on the row. Every change to it happens inside
    a sale, void or delivery transaction that holds a row lock on the product,
    and ``version_id`` turns any lost update that slips through into a
    StaleDataError that the caller retries.

    Prices are authoritative in cents (frontend may only format for display).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(100), nullable=False, index=True)
    category = db.Column(enum_column(ProductCategory, "product_category"), nullable=False, index=True)
    unit_type = db.Column(enum_column(UnitType, "unit_type"), nullable=False)

    cost_price_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=10)

    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    barcode = db.Column(db.String(50), nullable=True, unique=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Returnable crates are tracked in the crate ledger (crate_tracking table)
    has_crate_tracking = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.minimum_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value if self.category else None,
            "unit_type": self.unit_type.value if self.unit_type else None,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "current_stock": self.current_stock,
            "minimum_stock": self.minimum_stock,
            "is_low_stock": self.is_low_stock,
            "description": self.description,
            "image_url": self.image_url,
            "barcode": self.barcode,
            "is_active": self.is_active,
            "has_crate_tracking": self.has_crate_tracking,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit_type": self.unit_type.value if self.unit_type else None,
            "has_crate_tracking": self.has_crate_tracking,
        }


class Delivery(db.Model):
    """
    Supplier delivery document.

    IMMUTABLE lines: once created, quantities and costs never change. Only
    header fields (supplier, delivery_date, notes, is_received) are editable.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.Index("ix_deliveries_date_created", "delivery_date", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "DEL-20260119-001")
    delivery_number = db.Column(db.String(32), nullable=False, unique=True)

    supplier = db.Column(db.String(100), nullable=False, index=True)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_date = db.Column(db.Date, nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)
    is_received = db.Column(db.Boolean, nullable=False, default=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    received_by = db.relationship("User")
    items = db.relationship(
        "DeliveryItem",
        back_populates="delivery",
        order_by="DeliveryItem.position",
        cascade="all, delete-orphan",
        lazy="select",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "delivery_number": self.delivery_number,
            "supplier": self.supplier,
            "total_cost_cents": self.total_cost_cents,
            "delivery_date": to_iso_date(self.delivery_date),
            "notes": self.notes,
            "is_received": self.is_received,
            "received_by_user_id": self.received_by_user_id,
            "received_by": self.received_by.to_summary() if self.received_by else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class DeliveryItem(db.Model):
    """Individual line items on a delivery document."""
    __tablename__ = "delivery_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_delivery_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=1)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    expiry_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    delivery = db.relationship("Delivery", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "position": self.position,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "expiry_date": to_iso_date(self.expiry_date),
        }
