# Overview: Append-only audit trail for deals, commissions and pin links.

from __future__ import annotations

import json
from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import DealEvent
from ..time_utils import utcnow

"""
Deal Event Invariants

- Append-only: no updates or deletes of existing events.
- No domain/business logic here.
- Events are added to the caller's open transaction; the caller commits.
"""

EVENT_DEAL_CREATED = "DEAL_CREATED"
EVENT_DEAL_UPDATED = "DEAL_UPDATED"
EVENT_STATUS_CHANGED = "STATUS_CHANGED"
EVENT_COMMISSION_ADDED = "COMMISSION_ADDED"
EVENT_COMMISSION_PAID = "COMMISSION_PAID"
EVENT_PAYMENT_REQUESTED = "PAYMENT_REQUESTED"
EVENT_PAYMENT_APPROVED = "PAYMENT_APPROVED"
EVENT_PAYMENT_REJECTED = "PAYMENT_REJECTED"
EVENT_PIN_CONVERTED = "PIN_CONVERTED"
EVENT_PIN_SYNCED = "PIN_SYNCED"


def append_deal_event(
    *,
    deal_id: int,
    event_type: str,
    actor_user_id: str | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    commission_id: int | None = None,
    pin_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> DealEvent:
    ev = DealEvent(
        deal_id=deal_id,
        event_type=event_type,
        actor_user_id=actor_user_id,
        from_status=from_status,
        to_status=to_status,
        commission_id=commission_id,
        pin_id=pin_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True, default=str) if payload else None,
    )
    db.session.add(ev)
    return ev


def list_deal_events(deal_id: int, *, limit: int = 200) -> list[DealEvent]:
    return (
        db.session.query(DealEvent)
        .filter_by(deal_id=deal_id)
        .order_by(DealEvent.occurred_at.asc(), DealEvent.id.asc())
        .limit(limit)
        .all()
    )
