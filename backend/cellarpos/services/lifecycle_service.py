# Overview: Service-layer operations for product lifecycle; decides retire vs delete.

"""
Product Lifecycle

================================================================================
PURPOSE: Decide what "delete" means for a product
================================================================================

RULES:
1. A product referenced by any sale line, delivery line or crate entry is RETIRED
   (is_active=False). Its row stays so history keeps resolving.
2. A product with no references is DELETED outright.
3. Crate ledger entries count as references too: the ledger is
   append-only and its rows must keep resolving to a product.

The decision itself is a pure function so it can be tested without a
database; `product_references` gathers the facts it needs.
================================================================================
"""

from __future__ import annotations

import enum

from ..extensions import db
from ..models import CrateEntry, DeliveryItem, SaleItem


class Disposal(str, enum.Enum):
    RETIRE = "retired"
    DELETE = "deleted"


def decide_disposal(has_references: bool) -> Disposal:
    """Referenced products are retired; unreferenced ones are deleted."""
    return Disposal.RETIRE if has_references else Disposal.DELETE


def product_references(product_id: int) -> dict:
    """Counts of rows that point at a product."""
    return {
        "sale_items": db.session.query(SaleItem).filter(SaleItem.product_id == product_id).count(),
        "delivery_items": db.session.query(DeliveryItem).filter(DeliveryItem.product_id == product_id).count(),
        "crate_entries": db.session.query(CrateEntry).filter(CrateEntry.product_id == product_id).count(),
    }


def has_blocking_references(references: dict) -> bool:
    return any(references.values())
