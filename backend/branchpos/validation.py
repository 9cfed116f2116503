from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 in major units (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Largest single line quantity accepted at checkout or receiving
MAX_LINE_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU, plan cap reached)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which columns a client may write, and which a create must carry."""
    writable_fields: set[str]
    required_on_create: set[str] | None = None


def parse_int(value: Any, field: str) -> int:
    """
    Strict integer parsing.

    bool is rejected even though it subclasses int. Floats, decimals in
    strings and scientific notation are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def parse_positive_int(value: Any, field: str, maximum: int | None = None) -> int:
    result = parse_int(value, field)
    if result <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return result


def parse_optional_int(value: Any, field: str, default: int | None = None) -> int | None:
    """Missing or blank gives `default`; anything else must be a strict integer."""
    if value is None or value == "":
        return default
    return parse_int(value, field)


def parse_datetime_arg(value: Any, field: str):
    """ISO 8601 query value to UTC-naive datetime; blank means no bound."""
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO 8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO 8601 datetime")


def _clean_column_value(col, raw: Any):
    """Coerce one JSON value to the column's type and check null, blank and length."""
    if raw is None:
        if not col.nullable:
            raise ValidationError(f"{col.key} cannot be null")
        return None

    if isinstance(col.type, Integer):
        return parse_int(raw, col.key)

    if isinstance(col.type, Boolean):
        if not isinstance(raw, bool):
            raise ValidationError(f"{col.key} must be true or false")
        return raw

    if isinstance(col.type, (String, Text)):
        text = str(raw).strip()
        if not text and not col.nullable:
            raise ValidationError(f"{col.key} cannot be blank")
        limit = getattr(col.type, "length", None)
        if limit and len(text) > limit:
            raise ValidationError(f"{col.key} exceeds max length {limit}")
        return text

    return raw


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON body into a column patch for `model`.

    Keys outside policy.writable_fields are rejected, so tenant and stock
    columns can only be set by services. With partial=False every
    required_on_create field must be present.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted((policy.required_on_create or set()) - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        if key not in columns:
            raise ValidationError(f"Unknown field: {key}")
        patch[key] = _clean_column_value(columns[key], raw)
    return patch


def enforce_rules_product(patch: dict) -> None:
    """Money fields are whole cents within MAX_PRICE_CENTS; counts never go negative."""
    for field in ("retail_price_cents", "wholesale_price_cents", "unit_cost_cents"):
        value = patch.get(field)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{field} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")

    for field in ("low_stock_threshold", "stock_quantity"):
        value = patch.get(field)
        if value is not None and value < 0:
            raise ValidationError(f"{field} must be >= 0")
