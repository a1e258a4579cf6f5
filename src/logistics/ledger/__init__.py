"""Event ledger -- append-only, idempotent audit log of dispatch events.

Every externally observed occurrence (Stripe payment, HubSpot edit) and every
internally generated one (status change, driver assignment) lands here exactly
once per (source, event_id). Order timelines are read back from this table.
"""

from src.logistics.ledger.repository import EventLedger, insert_event
from src.logistics.ledger.schemas import (
    DispatchEventRecord,
    DuplicateEvent,
    EventSource,
    LedgerEntry,
    EventType,
)

__all__ = [
    "EventLedger",
    "insert_event",
    "DispatchEventRecord",
    "DuplicateEvent",
    "EventSource",
    "LedgerEntry",
    "EventType",
]
