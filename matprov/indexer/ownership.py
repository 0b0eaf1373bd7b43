"""
Ownership view: who holds which material ids, derived from transfer events.

The ledger has no "everything owned by X" query, so ownership sets are
rebuilt by folding ``material.transferred`` events: add the id to the
receiver's set, remove it from the sender's set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from ..ledger.events import MATERIAL_TRANSFERRED, LedgerEvent
from ..models import ZERO_ADDRESS


@dataclass
class OwnershipView:
    """Per-identity ownership sets plus every id ever observed."""

    owners: dict[str, set[int]] = field(default_factory=dict)
    all_known_ids: set[int] = field(default_factory=set)

    def copy(self) -> OwnershipView:
        return OwnershipView(
            owners={k: set(v) for k, v in self.owners.items()},
            all_known_ids=set(self.all_known_ids),
        )

    def apply(self, event: LedgerEvent) -> None:
        if event.event_type != MATERIAL_TRANSFERRED:
            return
        token_id = int(event.payload["token_id"])
        sender = event.payload.get("from", ZERO_ADDRESS)
        receiver = event.payload.get("to", ZERO_ADDRESS)

        self.all_known_ids.add(token_id)
        if sender != ZERO_ADDRESS:
            held = self.owners.get(sender)
            if held is not None:
                held.discard(token_id)
                if not held:
                    del self.owners[sender]
        if receiver != ZERO_ADDRESS:
            self.owners.setdefault(receiver, set()).add(token_id)

    def owned_by(self, identity: str) -> list[int]:
        return sorted(self.owners.get(identity, ()))

    def to_dict(self) -> dict[str, Any]:
        """Canonical JSON-compatible form (sorted, so replays compare byte-for-byte)."""
        return {
            "owners": {owner: sorted(ids) for owner, ids in sorted(self.owners.items())},
            "all_known_ids": sorted(self.all_known_ids),
        }


def fold_ownership(events: Iterable[LedgerEvent], view: OwnershipView | None = None) -> OwnershipView:
    """Fold events into a new ownership view (the input view is not modified)."""
    result = view.copy() if view is not None else OwnershipView()
    for event in events:
        result.apply(event)
    return result
