from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from .time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum deal value: $99,999,999.99 (9,999,999,999 cents)
# Keeps roofing-job totals inside a sane range for the commission math
MAX_PRICE_CENTS = 9_999_999_999

# 100% expressed in basis points
MAX_PERCENT_BPS = 10_000


class ValidationError(ValueError):
    """400-level input problem (missing required field, bad type, bad range)."""
    code = "VALIDATION_ERROR"


class NotFoundError(LookupError):
    """404-level: the addressed record does not exist."""
    code = "NOT_FOUND"


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., invalid transition, duplicate address)."""
    code = "CONFLICT"


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
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Floats (coordinates)
    if isinstance(coltype, Float):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{col.key} must be a number")

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Dates (YYYY-MM-DD)
    if isinstance(coltype, Date):
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            return d
        raise ValidationError(f"{col.key} must be a date")

    # URI lists (photos)
    if isinstance(coltype, JSON):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValidationError(f"{col.key} must be a list of strings")
        return [v.strip() for v in value if v.strip()]

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable or k in required:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for required / non-nullable text fields
        if isinstance(col.type, (String, Text)) and (not col.nullable or k in required):
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_cents(patch: dict, field: str) -> None:
    if field in patch and patch[field] is not None:
        value = patch[field]
        if value < 0:
            raise ValidationError(f"{field} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_deal(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_cents(patch, "total_price_cents")
    _check_cents(patch, "rcv_cents")

    if "total_price_cents" in patch and patch["total_price_cents"] is None:
        raise ValidationError("total_price_cents cannot be null")

    email = patch.get("homeowner_email")
    if email and "@" not in email:
        raise ValidationError("homeowner_email must be an email address")


def enforce_rules_pin(patch: dict) -> None:
    lat = patch.get("latitude")
    if lat is not None and not -90.0 <= lat <= 90.0:
        raise ValidationError("latitude must be between -90 and 90")

    lng = patch.get("longitude")
    if lng is not None and not -180.0 <= lng <= 180.0:
        raise ValidationError("longitude must be between -180 and 180")

    start = patch.get("appointment_date")
    end = patch.get("appointment_end_date")
    if start and end and end < start:
        raise ValidationError("appointment_end_date must not be before appointment_date")


def parse_percent_bps(value: Any, *, field: str = "commission_percent") -> int:
    """
    Convert a decimal percentage (10.5 meaning 10.5%) into integer basis points.

    Goes through Decimal(str(...)) so 10.1 arrives as exactly 1010 bps rather
    than whatever the float happens to hold.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        pct = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal number")
    if not pct.is_finite():
        raise ValidationError(f"{field} must be a decimal number")

    bps = pct * 100
    if bps != bps.to_integral_value():
        raise ValidationError(f"{field} supports at most two decimal places")
    bps = int(bps)

    if bps < 0 or bps > MAX_PERCENT_BPS:
        raise ValidationError(f"{field} must be between 0 and 100")
    return bps


def bps_to_percent(bps: int | None) -> str | None:
    """Render basis points as a two-decimal percent string ("10.50")."""
    if bps is None:
        return None
    return f"{Decimal(bps) / 100:.2f}"
