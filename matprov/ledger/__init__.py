"""
Ledger collaborator for matprov.

The ledger is an external, append-only, totally-ordered record of accepted
mutations and the sole source of truth. This package provides:

- events: Immutable event types (role.registered, material.minted, listing.sold, ...)
- state: World-state fold (point-in-time snapshots for ``get_state``)
- store: Append-only JSONL storage with transaction ordering
- clock: Ledger time sources

Design principles:
- Append-only: events are never rewritten
- Totally ordered: one position per event, one batch per transaction
- Derived state: everything else is a fold over the event stream
"""

from .clock import Clock, ManualClock, SystemClock
from .events import LedgerEvent, create_event
from .state import LedgerState, apply_event, fold_events
from .store import EventLedger, Receipt

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "LedgerEvent",
    "create_event",
    "LedgerState",
    "apply_event",
    "fold_events",
    "EventLedger",
    "Receipt",
]
