from __future__ import annotations
from datetime import datetime, timezone
from homelia.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: ₹99,99,999.99 (999,999,999 paise)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_PAISE = 999_999_999

# Indian GSTIN: 2-digit state, 10-char PAN, entity code, Z, checksum
GSTIN_PATTERN = r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$"


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def coerce_int(value: Any, field: str) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", errors={field: "must be an integer"})
        # Reject scientific notation (e.g., "1e15", "1E10") and decimals (e.g., "12.5")
        if 'e' in stripped.lower() or '.' in stripped:
            raise ValidationError(f"{field} must be a plain integer", errors={field: "must be a plain integer"})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", errors={field: "must be an integer"})
    # Reject floats explicitly
    raise ValidationError(f"{field} must be an integer", errors={field: "must be an integer"})


def coerce_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            dt = None
        if dt is not None:
            return dt
    raise ValidationError(f"{field} must be an ISO-8601 datetime", errors={field: "must be an ISO-8601 datetime"})


def require_positive_int(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", errors={field: "required"})
    number = coerce_int(value, field)
    if number < 1:
        raise ValidationError(f"{field} must be at least 1", errors={field: "must be at least 1"})
    return number


def require_price_paise(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", errors={field: "required"})
    price = coerce_int(value, field)
    if price < 0:
        raise ValidationError(f"{field} must be >= 0", errors={field: "must be >= 0"})
    if price > MAX_PRICE_PAISE:
        raise ValidationError(
            f"{field} cannot exceed {MAX_PRICE_PAISE}",
            errors={field: f"cannot exceed {MAX_PRICE_PAISE}"},
        )
    return price


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{field} is required", errors={field: "required"})
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", errors={field: f"max length {max_length}"})
    return text


def require_address(value: Any, field: str) -> dict:
    if not isinstance(value, dict) or not value:
        raise ValidationError(f"{field} is required", errors={field: "must be a non-empty object"})
    return value


def require_items(value: Any, field: str = "items") -> list[dict]:
    if not isinstance(value, list) or not value:
        raise ValidationError("At least one item is required", errors={field: "must be a non-empty list"})
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            raise ValidationError(f"{field}[{index}] must be an object", errors={f"{field}[{index}]": "must be an object"})
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                errors={f: "required" for f in missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError(f"Field not allowed: {k}", errors={k: "not allowed"})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", errors={k: "cannot be null"})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", errors={k: "cannot be blank"})

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", errors={k: f"max length {col.type.length}"})

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for field in ("price_paise", "b2b_price_paise", "dealer_price_paise"):
        if field in patch and patch[field] is not None:
            require_price_paise(patch[field], field)

    if "moq" in patch and patch["moq"] is not None and patch["moq"] < 1:
        raise ValidationError("moq must be at least 1", errors={"moq": "must be at least 1"})

    if "stock_quantity" in patch and patch["stock_quantity"] is not None and patch["stock_quantity"] < 0:
        raise ValidationError("stock_quantity must be >= 0", errors={"stock_quantity": "must be >= 0"})
