# Overview: Append-only audit ledger for billing and inventory events.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
"""
Ledger invariants

- Append-only audit log for cross-cutting domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
- As-of filtering in the read API is inclusive: occurred_at <= as_of.
"""


def append_ledger_event(
    *,
    branch_id: str,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_id: str | None = None,
    sale_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    """
    Append a ledger event to the current transaction. Never commits.
    """
    ev = LedgerEvent(
        branch_id=branch_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        sale_id=sale_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    branch_id: str,
    *,
    event_type: str | None = None,
    event_category: str | None = None,
    sale_id: int | None = None,
    as_of: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[LedgerEvent]:
    q = db.session.query(LedgerEvent).filter(LedgerEvent.branch_id == branch_id)
    if event_type:
        q = q.filter(LedgerEvent.event_type == event_type)
    if event_category:
        q = q.filter(LedgerEvent.event_category == event_category)
    if sale_id is not None:
        q = q.filter(LedgerEvent.sale_id == sale_id)
    if as_of is not None:
        q = q.filter(LedgerEvent.occurred_at <= as_of)

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    return (
        q.order_by(LedgerEvent.occurred_at.desc(), LedgerEvent.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
