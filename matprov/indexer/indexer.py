"""
Log-to-view indexer.

Replays the ledger's public event stream into three read views (ownership,
active listings, per-material history). Views are rebuilt purely from events,
so replaying the same stream always produces byte-identical output.

Sync is single-writer and batched. Each batch produces a new immutable
``IndexSnapshot`` which replaces the previous one in one reference swap, so a
concurrent reader sees either the pre-batch or the post-batch views.

If the stream no longer matches what was indexed (a position gap, or the
event at the last indexed position changed) the index is discarded and
rebuilt from genesis.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError
from ..ledger.state import LedgerState, apply_event
from ..ledger.store import EventLedger
from .history import DEFAULT_PROBE_WINDOW, HistoryEntry, HistoryView, reconcile_history
from .listings import ActiveListing, ListingFilter, ListingsView, MetadataResolver, select_listings
from .ownership import OwnershipView

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500

# Positions between cached states used by history reconciliation
CHECKPOINT_STRIDE = 64


@dataclass(frozen=True)
class IndexSnapshot:
    """Immutable views as of one ledger position."""

    position: int = 0
    digest: str | None = None  # digest of the event at ``position``
    ownership: OwnershipView = field(default_factory=OwnershipView)
    listings: ListingsView = field(default_factory=ListingsView)
    history: HistoryView = field(default_factory=HistoryView)


@dataclass(frozen=True)
class IndexStatus:
    position: int
    head: int

    @property
    def stale(self) -> bool:
        return self.position < self.head

    @property
    def lag(self) -> int:
        return max(self.head - self.position, 0)

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "head": self.head, "stale": self.stale, "lag": self.lag}


class PointInTimeStates:
    """
    Point-in-time entity lookups over the ledger prefix ending at ``end``.

    The prefix is folded once, keeping a state copy every ``stride``
    positions; each lookup replays at most ``stride`` events from the
    nearest checkpoint at or below it.
    """

    def __init__(self, ledger: EventLedger, end: int, stride: int = CHECKPOINT_STRIDE):
        self.ledger = ledger
        self.end = end
        self.stride = stride
        self._checkpoints: dict[int, LedgerState] | None = None

    def _fold(self) -> dict[int, LedgerState]:
        state = LedgerState()
        checkpoints = {0: state.copy()}
        for event in self.ledger.stream_events(include_storage=True):
            if event.position > self.end:
                break
            apply_event(state, event)
            if event.position % self.stride == 0:
                checkpoints[event.position] = state.copy()
        return checkpoints

    def get_state(self, entity_key: str, position: int) -> dict[str, Any] | None:
        if not 0 <= position <= self.end:
            raise ValueError(f"position {position} is outside the indexed range 0..{self.end}")
        if self._checkpoints is None:
            self._checkpoints = self._fold()

        base = position - position % self.stride
        state = self._checkpoints[base].copy()
        for p in range(base + 1, position + 1):
            event = self.ledger.event_at(p)
            if event is None:
                raise ValueError(f"ledger has no event at position {p}")
            apply_event(state, event)
        return state.get(entity_key)


class LedgerIndexer:
    """Ownership, listings and history views folded from the ledger."""

    def __init__(
        self,
        ledger: EventLedger,
        *,
        probe_window: int = DEFAULT_PROBE_WINDOW,
        batch_size: int = DEFAULT_BATCH_SIZE,
        resolve_metadata: MetadataResolver | None = None,
    ):
        """
        Args:
            ledger: Event source and point-in-time state probe
            probe_window: Maximum positions probed backwards per history gap
            batch_size: Events applied per snapshot swap
            resolve_metadata: Metadata lookup used by listing filters
        """
        if probe_window < 1:
            raise ValueError(f"probe_window must be positive: {probe_window}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive: {batch_size}")
        self.ledger = ledger
        self.probe_window = probe_window
        self.batch_size = batch_size
        self.resolve_metadata = resolve_metadata

        self._snapshot = IndexSnapshot()
        self._sync_lock = threading.Lock()
        self.rebuilds = 0

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    # --- Sync ---

    def _continuous(self, snap: IndexSnapshot) -> bool:
        if snap.position == 0:
            return True
        event = self.ledger.event_at(snap.position)
        return event is not None and event.digest() == snap.digest

    def sync(self) -> IndexSnapshot:
        """
        Consume events appended since the last sync.

        Returns:
            The snapshot after the last applied batch
        """
        with self._sync_lock:
            if not self._continuous(self._snapshot):
                logger.warning(
                    "Ledger no longer matches index at position %d; rebuilding from genesis",
                    self._snapshot.position,
                )
                self._snapshot = IndexSnapshot()
                self.rebuilds += 1
            return self._consume()

    def rebuild(self) -> IndexSnapshot:
        """Discard all views and replay the ledger from genesis."""
        with self._sync_lock:
            self._snapshot = IndexSnapshot()
            self.rebuilds += 1
            logger.info("Rebuilding index from genesis")
            return self._consume()

    def _consume(self) -> IndexSnapshot:
        snap = self._snapshot
        head = self.ledger.head
        if head <= snap.position:
            return snap

        ownership = snap.ownership.copy()
        listings = snap.listings.copy()
        history = snap.history.copy()
        expected = snap.position + 1
        pending = 0
        last = None

        for event in self.ledger.stream_events(from_position=expected, include_storage=True):
            if event.position > head:
                break
            if event.position != expected:
                # Gap in the stream: nothing after it can be trusted
                if snap.position == 0:
                    raise ValueError(f"Ledger stream has a gap at position {expected}")
                logger.warning("Ledger gap: expected position %d, got %d; rebuilding", expected, event.position)
                self._snapshot = IndexSnapshot()
                self.rebuilds += 1
                return self._consume()

            ownership.apply(event)
            listings.apply(event)
            history.apply(event)
            last = event
            expected += 1
            pending += 1

            if pending >= self.batch_size:
                self._publish(last.position, last.digest(), ownership, listings, history)
                ownership, listings, history = ownership.copy(), listings.copy(), history.copy()
                pending = 0

        if pending and last is not None:
            self._publish(last.position, last.digest(), ownership, listings, history)
        return self._snapshot

    def _publish(
        self,
        position: int,
        digest: str,
        ownership: OwnershipView,
        listings: ListingsView,
        history: HistoryView,
    ) -> None:
        self._snapshot = IndexSnapshot(
            position=position,
            digest=digest,
            ownership=ownership,
            listings=listings,
            history=history,
        )
        logger.debug("Index advanced to position %d", position)

    # --- Queries ---

    def status(self) -> IndexStatus:
        return IndexStatus(position=self._snapshot.position, head=self.ledger.head)

    def ownership_set(self, identity: str) -> list[int]:
        return self._snapshot.ownership.owned_by(identity)

    def all_known_ids(self) -> list[int]:
        return sorted(self._snapshot.ownership.all_known_ids)

    def active_listings(self, listing_filter: ListingFilter | None = None) -> list[ActiveListing]:
        snap = self._snapshot
        return select_listings(snap.listings, self.ledger.state(), listing_filter, self.resolve_metadata)

    def history(self, token_id: int) -> list[HistoryEntry]:
        """
        History of one material, reconciled against point-in-time state.

        Raises:
            NotFoundError: The material is not in the index
        """
        entries = self._history(self._snapshot, token_id)
        if not entries:
            raise NotFoundError("UnknownMaterial", f"material #{token_id} is not indexed")
        return entries

    def _history(
        self,
        snap: IndexSnapshot,
        token_id: int,
        states: PointInTimeStates | None = None,
    ) -> list[HistoryEntry]:
        exact = snap.history.exact(token_id)
        if not exact or not snap.history.needs_reconciliation(token_id):
            return exact
        if states is None:
            states = PointInTimeStates(self.ledger, snap.position)
        return reconcile_history(exact, token_id, states.get_state, snap.position, self.probe_window)

    # --- Determinism ---

    def views_dict(self) -> dict[str, Any]:
        snap = self._snapshot
        states = PointInTimeStates(self.ledger, snap.position)
        return {
            "position": snap.position,
            "ownership": snap.ownership.to_dict(),
            "listings": snap.listings.to_dict(),
            "history": {
                str(token_id): [e.to_dict() for e in self._history(snap, token_id, states)]
                for token_id in sorted(snap.history.entries)
            },
        }

    def views_json(self) -> str:
        return json.dumps(self.views_dict(), sort_keys=True, separators=(",", ":"))

    def fingerprint(self) -> str:
        """sha256 of the canonical JSON of all views."""
        return hashlib.sha256(self.views_json().encode("utf-8")).hexdigest()
