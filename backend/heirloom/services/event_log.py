"""
Lifecycle event log.

Events are added to the caller's session so they commit atomically with
the state change they describe.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from heirloom.models.dead_man_switch_event import DeadManSwitchEvent

logger = logging.getLogger(__name__)


def record_event(
    db: Session,
    vault_id: str,
    event_type: str,
    event_data: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> DeadManSwitchEvent:
    """Append a lifecycle event (not committed)."""
    event = DeadManSwitchEvent(
        vault_id=vault_id,
        event_type=event_type,
        event_data=event_data or {},
    )
    if occurred_at is not None:
        event.created_at = occurred_at
    db.add(event)
    logger.info(
        "Lifecycle event recorded",
        extra={"vault_id": vault_id, "event_type": event_type}
    )
    return event


def has_event(db: Session, vault_id: str, event_type: str) -> bool:
    return (
        db.query(DeadManSwitchEvent.id)
        .filter(
            DeadManSwitchEvent.vault_id == vault_id,
            DeadManSwitchEvent.event_type == event_type,
        )
        .first()
        is not None
    )
