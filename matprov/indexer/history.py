"""
Per-material history view with confidence flags.

Explicit events give exact history entries. Some producers write a status to
storage without emitting an event (``material.status_written``); those
changes only show up as a disagreement between the last known status and the
ledger's point-in-time state. Reconciliation probes backwards from the point
of disagreement to pin the change to a position:

    exact        an explicit event
    inferred     pinned by probing point-in-time state
    approximate  not pinned within the probe window (or a probe failed);
                 recorded against the nearest known position
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from ..ledger.events import (
    LISTING_CANCELLED,
    LISTING_CREATED,
    LISTING_SOLD,
    MATERIAL_ASSEMBLED,
    MATERIAL_MINTED,
    MATERIAL_STATUS_CHANGED,
    MATERIAL_STATUS_WRITTEN,
    MATERIAL_TRANSFERRED,
    LedgerEvent,
    material_key,
)
from ..models import MATERIAL_ASSET, ZERO_ADDRESS, MaterialStatus

logger = logging.getLogger(__name__)

# probe(entity_key, position) -> entity snapshot or None
StateProbe = Callable[[str, int], "dict[str, Any] | None"]

DEFAULT_PROBE_WINDOW = 100


class Confidence(str, Enum):
    EXACT = "exact"
    INFERRED = "inferred"
    APPROXIMATE = "approximate"


@dataclass(frozen=True)
class HistoryEntry:
    """One step in a material's history."""

    token_id: int
    position: int
    kind: str  # minted, status_changed, transferred, assembled_into, listed, listing_cancelled, sold, unresolved
    status: MaterialStatus | None = None
    actor: str = ""
    batch: int = 0
    timestamp: int | None = None
    details: dict[str, Any] = field(default_factory=dict)
    confidence: Confidence = Confidence.EXACT

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_id": self.token_id,
            "position": self.position,
            "kind": self.kind,
            "status": self.status.label if self.status is not None else None,
            "actor": self.actor,
            "batch": self.batch,
            "timestamp": self.timestamp,
            "details": self.details,
            "confidence": self.confidence.value,
        }


def _entry(event: LedgerEvent, token_id: int, kind: str, status: MaterialStatus | None, **details: Any) -> HistoryEntry:
    return HistoryEntry(
        token_id=token_id,
        position=event.position,
        kind=kind,
        status=status,
        actor=event.actor,
        batch=event.batch,
        timestamp=event.timestamp,
        details=details,
    )


@dataclass
class HistoryView:
    """
    Exact history entries per material id, in ledger order.

    ``silent`` holds the ids that received a storage-only status write; only
    their histories can disagree with point-in-time state.
    """

    entries: dict[int, list[HistoryEntry]] = field(default_factory=dict)
    silent: set[int] = field(default_factory=set)

    def copy(self) -> HistoryView:
        return HistoryView(entries={k: list(v) for k, v in self.entries.items()}, silent=set(self.silent))

    def _add(self, entry: HistoryEntry) -> None:
        self.entries.setdefault(entry.token_id, []).append(entry)

    def apply(self, event: LedgerEvent) -> None:
        et = event.event_type
        payload = event.payload

        if et == MATERIAL_STATUS_WRITTEN:
            self.silent.add(int(payload["token_id"]))

        elif et == MATERIAL_MINTED:
            token_id = int(payload["token_id"])
            self._add(_entry(
                event, token_id, "minted", MaterialStatus.AVAILABLE,
                owner=payload["owner"],
                composed_of=list(payload.get("composed_of", [])),
            ))

        elif et == MATERIAL_TRANSFERRED:
            # The mint transfer is part of the minted entry
            if payload.get("from", ZERO_ADDRESS) == ZERO_ADDRESS:
                return
            token_id = int(payload["token_id"])
            self._add(_entry(
                event, token_id, "transferred", None,
                **{"from": payload["from"], "to": payload["to"]},
            ))

        elif et == MATERIAL_STATUS_CHANGED:
            token_id = int(payload["token_id"])
            self._add(_entry(
                event, token_id, "status_changed", MaterialStatus(int(payload["status"])),
                previous=MaterialStatus(int(payload["previous"])).label,
            ))

        elif et == MATERIAL_ASSEMBLED:
            token_id = int(payload["token_id"])
            self._add(_entry(
                event, token_id, "assembled_into", MaterialStatus.ASSEMBLED,
                assembled_into=int(payload["assembled_into"]),
            ))

        elif et in (LISTING_CREATED, LISTING_CANCELLED, LISTING_SOLD):
            if payload.get("asset_ref") != MATERIAL_ASSET:
                return
            token_id = int(payload["token_id"])
            if et == LISTING_CREATED:
                self._add(_entry(event, token_id, "listed", None, seller=payload["seller"], price=payload["price"]))
            elif et == LISTING_CANCELLED:
                self._add(_entry(event, token_id, "listing_cancelled", None, seller=payload["seller"]))
            else:
                self._add(_entry(
                    event, token_id, "sold", None,
                    seller=payload["seller"], buyer=payload["buyer"], price=payload["price"],
                ))

    def exact(self, token_id: int) -> list[HistoryEntry]:
        return list(self.entries.get(token_id, ()))

    def needs_reconciliation(self, token_id: int) -> bool:
        return token_id in self.silent

    def to_dict(self) -> dict[str, Any]:
        return {
            str(token_id): [e.to_dict() for e in self.entries[token_id]]
            for token_id in sorted(self.entries)
        }


def fold_history(events: Iterable[LedgerEvent], view: HistoryView | None = None) -> HistoryView:
    """Fold events into a new history view (the input view is not modified)."""
    result = view.copy() if view is not None else HistoryView()
    for event in events:
        result.apply(event)
    return result


# --- Reconciliation against point-in-time state ---


class _ProbeFailed(Exception):
    pass


def _status_at(probe: StateProbe, token_id: int, position: int) -> MaterialStatus:
    try:
        snapshot = probe(material_key(token_id), position)
    except Exception as e:
        raise _ProbeFailed(str(e)) from e
    if snapshot is None:
        raise _ProbeFailed(f"material {token_id} does not exist at position {position}")
    return MaterialStatus(int(snapshot["status"]))


def _scan_back(
    probe: StateProbe,
    token_id: int,
    known: MaterialStatus,
    observed: MaterialStatus,
    lower: int,
    upper: int,
    window: int,
) -> list[HistoryEntry]:
    """
    Locate silent status changes in (lower, upper].

    ``known`` is the status at ``lower``; ``observed`` the status at ``upper``.
    Walks backwards at most ``window`` positions; every position where the
    status differs from its predecessor becomes an inferred entry. Whatever
    is left unexplained when the window (or a probe) gives out becomes one
    approximate entry at the lowest position reached.
    """
    found: list[HistoryEntry] = []
    current = observed
    pos = upper
    floor = max(lower, upper - window)

    while pos > floor:
        try:
            before = known if pos - 1 == lower else _status_at(probe, token_id, pos - 1)
        except _ProbeFailed as e:
            logger.warning("History probe for material %s at %d failed: %s", token_id, pos - 1, e)
            break
        if before != current:
            found.append(HistoryEntry(
                token_id=token_id,
                position=pos,
                kind="status_changed",
                status=current,
                details={"previous": before.label},
                confidence=Confidence.INFERRED,
            ))
            current = before
        if current == known and pos - 1 == lower:
            break
        pos -= 1

    if current != known:
        found.append(HistoryEntry(
            token_id=token_id,
            position=pos,
            kind="status_changed",
            status=current,
            details={"previous": known.label, "between": [lower, pos]},
            confidence=Confidence.APPROXIMATE,
        ))

    found.reverse()
    return found


def reconcile_history(
    exact: list[HistoryEntry],
    token_id: int,
    probe: StateProbe,
    end: int,
    window: int = DEFAULT_PROBE_WINDOW,
) -> list[HistoryEntry]:
    """
    Merge exact entries with status changes recovered by probing.

    State is sampled just before each explicit entry and at ``end``; any
    disagreement with the status implied by the entries so far is resolved
    with a bounded backward scan.

    Args:
        exact: Exact entries for the material, in ledger order
        token_id: Material id
        probe: Point-in-time state lookup
        end: Last ledger position the history covers
        window: Maximum positions probed per disagreement

    Returns:
        Entries ordered by position
    """
    if not exact:
        return []

    result: list[HistoryEntry] = [exact[0]]
    known = exact[0].status if exact[0].status is not None else MaterialStatus.AVAILABLE
    last = exact[0].position

    checkpoints: list[tuple[int, HistoryEntry | None]] = [(e.position - 1, e) for e in exact[1:]]
    checkpoints.append((end, None))

    for check_at, entry in checkpoints:
        if check_at > last:
            try:
                observed = _status_at(probe, token_id, check_at)
            except _ProbeFailed as e:
                logger.warning("History probe for material %s at %d failed: %s", token_id, check_at, e)
                result.append(HistoryEntry(
                    token_id=token_id,
                    position=check_at,
                    kind="unresolved",
                    details={"between": [last, check_at], "error": str(e)},
                    confidence=Confidence.APPROXIMATE,
                ))
            else:
                if observed != known:
                    result.extend(_scan_back(probe, token_id, known, observed, last, check_at, window))
                    known = observed

        if entry is not None:
            result.append(entry)
            if entry.status is not None:
                known = entry.status
            last = entry.position

    return result
