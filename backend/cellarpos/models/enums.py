"""
Closed value sets for enum-like columns.

Each enum is a ``str`` subclass so values serialize to JSON unchanged, and is
persisted through :func:`enum_column` as a non-native SQLAlchemy Enum (a
VARCHAR with a CHECK constraint) storing the lower-case ``value``.
"""

from __future__ import annotations

import enum

from sqlalchemy import Enum as SAEnum


class ProductCategory(str, enum.Enum):
    BEER = "beer"
    WINE = "wine"
    VODKA = "vodka"
    GIN = "gin"
    WHISKEY = "whiskey"
    RUM = "rum"
    BRANDY = "brandy"
    CHAMPAGNE = "champagne"
    OTHER = "other"


class UnitType(str, enum.Enum):
    CRATE = "crate"
    CARTON = "carton"
    BOTTLE = "bottle"
    PIECE = "piece"
    CASE = "case"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    MPESA = "mpesa"
    BANK = "bank"
    CREDIT = "credit"


class CrateTransactionType(str, enum.Enum):
    DELIVERY = "delivery"
    SALE = "sale"
    RETURN = "return"
    ADJUSTMENT = "adjustment"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"


def enum_values(enum_cls) -> list[str]:
    return [e.value for e in enum_cls]


def enum_column(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=enum_values,
        native_enum=False,
        validate_strings=True,
        length=32,
    )
