# Overview: Error taxonomy and input coercion shared by services and routes.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, Date, Enum, Integer, String, Text

from cellarpos.time_utils import parse_iso_date


# 9,999,999.99 in the shop currency
MAX_PRICE_CENTS = 999_999_999

# Per-line / per-movement ceiling for units and crates
MAX_QUANTITY = 1_000_000

# Signed 64-bit INTEGER range shared by SQLite and PostgreSQL BIGINT
DB_INT_MIN = -(2 ** 63)
DB_INT_MAX = 2 ** 63 - 1


class ServiceError(Exception):
    """
    Base for errors surfaced to API callers.

    Each subclass maps to one HTTP status; ``details`` carries structured
    context (e.g. which product ran out of stock).
    """
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError, ValueError):
    status_code = 400


class StateError(ServiceError):
    """Operation not allowed in the entity's current state (voided sale, untracked product)."""
    status_code = 400


class InsufficientStockError(StateError):
    pass


class NotFoundError(ServiceError, LookupError):
    status_code = 404


class ConflictError(ServiceError):
    """Uniqueness clash: barcode, username."""
    status_code = 409


class AuthError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


# =============================================================================
# Scalar coercion
# =============================================================================


def coerce_int(value: Any, field_name: str) -> int:
    """
    Accept ints and plain digit strings ("12", "-3").

    Booleans, floats, "12.5" and "1e3" are rejected: quantities and cents are
    whole numbers and a silent truncation would change money. Values outside
    the database INTEGER range are rejected here rather than in the driver.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field_name} must be an integer, not a decimal")
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text[:1] in "+-" else text
        # isdigit() alone also accepts "²" and other non-ASCII digits
        if not (digits.isascii() and digits.isdigit()):
            raise ValidationError(f"{field_name} must be an integer")
        value = int(text)
    if not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer")
    if not DB_INT_MIN <= value <= DB_INT_MAX:
        raise ValidationError(f"{field_name} is out of range")
    return value


def coerce_enum(enum_cls, value: Any, field_name: str):
    """Parse a client string into a closed enum (case-insensitive)."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(e.value for e in enum_cls)
    raise ValidationError(f"{field_name} must be one of: {allowed}")


def coerce_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
    raise ValidationError(f"{field_name} must be an ISO-8601 date (YYYY-MM-DD)")


def coerce_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field_name} must be a boolean")


# =============================================================================
# Column-driven payload validation
# =============================================================================


@dataclass(frozen=True)
class FieldPolicy:
    """
    Which columns a client may write, and which must be present on create.

    The allowlist is the security boundary: ids, timestamps and
    version_id are never writable from a request body.
    """
    writable: frozenset[str]
    required: frozenset[str] = field(default_factory=frozenset)

    def without(self, *names: str) -> "FieldPolicy":
        return FieldPolicy(writable=self.writable - set(names), required=self.required - set(names))


def _coerce_column_value(col, value: Any):
    coltype = col.type
    # non-native Enum subclasses String, so it goes first
    if isinstance(coltype, Enum) and coltype.enum_class is not None:
        return coerce_enum(coltype.enum_class, value, col.key)
    if isinstance(coltype, Boolean):
        return coerce_bool(value, col.key)
    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)
    if isinstance(coltype, Date):
        return coerce_date(value, col.key)
    if isinstance(coltype, (String, Text)):
        text = str(value).strip()
        if not text:
            if not col.nullable:
                raise ValidationError(f"{col.key} cannot be blank")
            return None
        if isinstance(coltype, String) and coltype.length and len(text) > coltype.length:
            raise ValidationError(f"{col.key} exceeds max length {coltype.length}")
        return text
    return value


def validate_payload(*, model, payload: dict, policy: FieldPolicy, partial: bool) -> dict:
    """
    Turn a JSON body into a clean patch dict for ``model``.

    Types, nullability and String lengths come from the SQLAlchemy column
    metadata. ``partial=False`` is create semantics and enforces
    ``policy.required``; ``partial=True`` validates only the keys given.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    patch: dict = {}

    for key, raw in payload.items():
        if key not in policy.writable or key not in columns:
            raise ValidationError(f"Field not allowed: {key}")
        col = columns[key]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _coerce_column_value(col, raw)

    return patch


def _check_price(patch: dict, name: str) -> None:
    price = patch.get(name)
    if price is None:
        return
    if price < 0:
        raise ValidationError(f"{name} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_product(patch: dict) -> None:
    """Product rules the column types cannot express."""
    _check_price(patch, "cost_price_cents")
    _check_price(patch, "selling_price_cents")

    name = patch.get("name")
    if name is not None and len(name) < 2:
        raise ValidationError("name must be at least 2 characters")

    for stock_field in ("current_stock", "minimum_stock"):
        value = patch.get(stock_field)
        if value is not None and value < 0:
            raise ValidationError(f"{stock_field} must be >= 0")

    image_url = patch.get("image_url")
    if image_url and not image_url.startswith(("http://", "https://")):
        raise ValidationError("image_url must be an http(s) URL")
