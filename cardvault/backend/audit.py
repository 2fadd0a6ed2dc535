"""Audit event helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .models import AuditEvent
from .store import EventLog


def emit(events: EventLog, user_id: str, event_type: str, now: datetime, **event_data: Any) -> AuditEvent:
    event = AuditEvent(user_id=user_id, event_type=event_type, event_data=event_data, created_at=now)
    events.record_event(event)
    return event
