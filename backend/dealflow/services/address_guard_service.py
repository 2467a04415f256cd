# Overview: Service-layer operations for the address guard; encapsulates duplicate-address detection.

"""
Geocoded Address Guard

WHY: Two reps canvassing the same house wastes a knock and starts a fight over
the commission. Before a pin (and, when enabled, a deal) is created, its
address is normalized and compared against every pin and deal address on the
platform, across all reps.

NORMALIZATION:
- lower-case
- ".", "," and ";" are treated as whitespace ("123 Main St." == "123 main st")
- leading/trailing whitespace trimmed, inner whitespace collapsed

MATCHING: exact match on the normalized form only (no fuzzy matching).

RACES: check_duplicate() followed by an INSERT is check-then-act. Pins carry a
unique constraint on normalized_address, and pin_service maps a uniqueness
violation at write time to the same DuplicateAddressError raised here.

Geocoding itself happens in the client before any of this is called.
"""

from __future__ import annotations

import re

from ..extensions import db
from ..models import Deal, Pin
from ..validation import ConflictError


_PUNCTUATION_RE = re.compile(r"[.,;]")
_WHITESPACE_RE = re.compile(r"\s+")


class DuplicateAddressError(ConflictError):
    """Raised when an address is already held by another pin or deal."""
    code = "DUPLICATE_ADDRESS"

    def __init__(self, address: str, matches: list[dict] | None = None):
        self.address = address
        self.matches = matches or []
        super().__init__(f"Address '{address}' is already registered")


def normalize_address(address: str | None) -> str | None:
    """
    Normalize a free-text address for duplicate detection.

    Returns None for a missing or blank address (blank addresses never collide).
    """
    if address is None:
        return None
    s = _PUNCTUATION_RE.sub(" ", str(address).lower())
    s = _WHITESPACE_RE.sub(" ", s).strip()
    return s or None


def find_address_matches(
    address: str | None,
    *,
    include_pins: bool = True,
    include_deals: bool = True,
    exclude_pin_id: int | None = None,
    exclude_deal_id: int | None = None,
) -> list[dict]:
    """
    List the pins and deals already holding this address.

    Returns [{"entity_type": "pin"|"deal", "id": ..., "address": ...}, ...]
    """
    normalized = normalize_address(address)
    if normalized is None:
        return []

    matches: list[dict] = []

    if include_pins:
        q = db.session.query(Pin.id, Pin.address).filter(Pin.normalized_address == normalized)
        if exclude_pin_id is not None:
            q = q.filter(Pin.id != exclude_pin_id)
        matches.extend({"entity_type": "pin", "id": pid, "address": addr} for pid, addr in q.all())

    if include_deals:
        q = db.session.query(Deal.id, Deal.address).filter(Deal.normalized_address == normalized)
        if exclude_deal_id is not None:
            q = q.filter(Deal.id != exclude_deal_id)
        matches.extend({"entity_type": "deal", "id": did, "address": addr} for did, addr in q.all())

    return matches


def check_duplicate(address: str | None, **scope) -> bool:
    """True if any pin or deal already holds this address (after normalization)."""
    return bool(find_address_matches(address, **scope))


def ensure_address_available(address: str | None, **scope) -> str | None:
    """
    Pre-flight guard used before creating a record.

    Returns the normalized address to store.

    Raises:
        DuplicateAddressError: If another pin or deal holds the address
    """
    matches = find_address_matches(address, **scope)
    if matches:
        raise DuplicateAddressError(address, matches)
    return normalize_address(address)
