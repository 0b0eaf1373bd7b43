"""
Append-only provenance event ledger.

The ledger is the source of truth for all domain state. It contains only
LedgerEvent entries, written once and never modified. Current state is
computed by folding events (see ``state.py``).

The ledger is also the only thing that orders mutations: ``transact`` runs a
domain operation against the current state and appends its events as one
batch, one submission at a time. The domain layer itself never locks.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Sequence

from ..errors import SubmissionTimeout
from .clock import Clock, SystemClock
from .events import STORAGE_ONLY_EVENTS, LedgerEvent
from .state import LedgerState, apply_event, fold_events

logger = logging.getLogger(__name__)

# fn(state, now) -> (derived identifier, event drafts)
Transaction = Callable[[LedgerState, int], "tuple[Any, Sequence[LedgerEvent]]"]


@dataclass(frozen=True)
class Receipt:
    """Acknowledgement of a finalized transaction."""

    ref: Any
    operation: str
    actor: str
    batch: int
    timestamp: int
    events: tuple[LedgerEvent, ...] = field(default_factory=tuple)

    @property
    def first_position(self) -> int | None:
        return self.events[0].position if self.events else None

    @property
    def last_position(self) -> int | None:
        return self.events[-1].position if self.events else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "ref": self.ref,
            "operation": self.operation,
            "actor": self.actor,
            "batch": self.batch,
            "timestamp": self.timestamp,
            "positions": [e.position for e in self.events],
        }


class EventLedger:
    """
    Append-only, totally-ordered event ledger.

    INVARIANT: This class NEVER modifies existing ledger lines.
    The only write operations are transact(), append_event() and append_many().

    Storage format: JSON Lines (.jsonl) - one event per line. With
    ``ledger_path=None`` the ledger lives in memory only.
    """

    def __init__(self, ledger_path: Path | None = None, clock: Clock | None = None):
        """
        Initialize ledger.

        Args:
            ledger_path: Path to the ledger.jsonl file (None = in-memory)
            clock: Ledger time source (defaults to wall clock)
        """
        self.ledger_path = ledger_path
        self.clock = clock or SystemClock()

        self._lock = threading.RLock()  # the ledger's total order
        self._events: list[LedgerEvent] = []
        self._state = LedgerState()
        self._batch = 0
        self._loaded = ledger_path is None

    # --- Loading ---

    def _ensure_loaded(self) -> None:
        """
        Load events from disk on first use (lazy loading).

        This method is idempotent - calling it multiple times is safe.
        """
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            events = list(self._read_file())
            for expected, event in enumerate(events, start=1):
                if event.position != expected:
                    raise ValueError(
                        f"Ledger discontinuity in {self.ledger_path}: expected position {expected}, "
                        f"found {event.position}"
                    )
            self._events = events
            self._state = fold_events(events)
            self._batch = events[-1].batch if events else 0
            self._loaded = True
            logger.debug("Loaded %d events from %s", len(events), self.ledger_path)

    def _read_file(self) -> Iterator[LedgerEvent]:
        if self.ledger_path is None or not self.ledger_path.exists():
            return
        with self.ledger_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield LedgerEvent.from_json(line)

    def reload(self) -> None:
        """Drop cached events and re-read the ledger file (for external writers)."""
        with self._lock:
            if self.ledger_path is None:
                return
            self._events = []
            self._state = LedgerState()
            self._batch = 0
            self._loaded = False
        self._ensure_loaded()

    # --- Writing ---

    def _write(self, events: Sequence[LedgerEvent]) -> None:
        """
        Append events to disk as one block.

        A failed write is rolled back by truncating the file to its prior
        size, so a batch is either fully on disk or not at all.
        """
        if self.ledger_path is None or not events:
            return
        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        block = "".join(event.to_json() + "\n" for event in events).encode("utf-8")
        with self.ledger_path.open("ab", buffering=0) as f:
            size = f.seek(0, 2)
            try:
                view = memoryview(block)
                while view:
                    written = f.write(view)
                    view = view[written:]
            except OSError:
                f.truncate(size)
                logger.error("Ledger write failed; truncated %s back to %d bytes", self.ledger_path, size)
                raise

    def _place(self, drafts: Iterable[LedgerEvent], now: int) -> list[LedgerEvent]:
        """Assign positions, batch and timestamp, and check the batch folds cleanly."""
        batch = self._batch + 1
        placed: list[LedgerEvent] = []
        for offset, draft in enumerate(drafts, start=1):
            placed.append(draft.at(len(self._events) + offset, batch, timestamp=draft.timestamp or now))
        # Fold against a scratch copy first so a bad batch is never written
        fold_events(placed, self._state.copy())
        return placed

    def _commit(self, placed: list[LedgerEvent]) -> None:
        self._write(placed)
        for event in placed:
            apply_event(self._state, event)
            self._events.append(event)
        if placed:
            self._batch = placed[0].batch

    def transact(
        self,
        actor: str,
        operation: str,
        fn: Transaction,
        *,
        timeout: float | None = None,
    ) -> Receipt:
        """
        Order and execute one transaction.

        ``fn`` receives a copy of the current state and the ledger time, and
        returns ``(ref, drafts)``. If ``fn`` raises, nothing is appended (the
        transaction reverts) and the exception propagates. Once the drafts are
        appended the transaction is final and this method reports success.

        Args:
            actor: Identity submitting the transaction
            operation: Operation name for receipts and logs (e.g. "material.mint")
            fn: Pure domain operation
            timeout: Seconds to wait for ordering (None = wait indefinitely)

        Raises:
            SubmissionTimeout: The transaction could not be ordered in time;
                nothing was appended.
        """
        self._ensure_loaded()
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise SubmissionTimeout(f"{operation} by {actor} not ordered within {timeout}s")
        try:
            now = self.clock.now()
            ref, drafts = fn(self._state.copy(), now)
            placed = self._place(drafts, now)
            self._commit(placed)
        finally:
            self._lock.release()

        logger.debug(
            "%s by %s finalized at positions %s",
            operation,
            actor,
            [e.position for e in placed],
        )
        return Receipt(
            ref=ref,
            operation=operation,
            actor=actor,
            batch=placed[0].batch if placed else self._batch,
            timestamp=now,
            events=tuple(placed),
        )

    def append_event(self, event: LedgerEvent) -> LedgerEvent:
        """Append one externally produced event; returns it with its position."""
        return self.append_many([event])[0]

    def append_many(self, events: Sequence[LedgerEvent]) -> list[LedgerEvent]:
        """
        Append externally produced events atomically as one batch.

        Events are validated by folding them against current state before
        anything is written; a batch that does not fold raises ValueError.
        """
        if not events:
            return []
        self._ensure_loaded()
        with self._lock:
            placed = self._place(events, self.clock.now())
            self._commit(placed)
        return placed

    # --- Reading ---

    @property
    def head(self) -> int:
        """Position of the last appended event (0 for an empty ledger)."""
        self._ensure_loaded()
        return len(self._events)

    def count(self) -> int:
        return self.head

    def now(self) -> int:
        return self.clock.now()

    def event_at(self, position: int) -> LedgerEvent | None:
        self._ensure_loaded()
        if 1 <= position <= len(self._events):
            return self._events[position - 1]
        return None

    def stream_events(
        self,
        event_types: Iterable[str] | None = None,
        from_position: int = 1,
        *,
        include_storage: bool = False,
    ) -> Iterator[LedgerEvent]:
        """
        Iterate over events in ledger order.

        The iteration covers the events present when it starts; it is finite
        and can be restarted from any position.

        Args:
            event_types: Only yield these event types (None = all public events)
            from_position: First position to yield (1-based)
            include_storage: Also yield storage-only writes
        """
        self._ensure_loaded()
        with self._lock:
            events = self._events[max(from_position, 1) - 1:]
        wanted = frozenset(event_types) if event_types is not None else None
        for event in events:
            if not include_storage and event.event_type in STORAGE_ONLY_EVENTS:
                continue
            if wanted is not None and event.event_type not in wanted:
                continue
            yield event

    def state(self, position: int | None = None) -> LedgerState:
        """
        World state at a position (a copy; callers may not mutate the ledger).

        Args:
            position: Ledger position (None = head)
        """
        self._ensure_loaded()
        with self._lock:
            if position is None or position >= len(self._events):
                return self._state.copy()
            if position < 0:
                raise ValueError(f"Invalid position: {position}")
            events = self._events[:position]
        return fold_events(events)

    def get_state(self, entity_key: str, position: int | None = None) -> dict[str, Any] | None:
        """
        Point-in-time snapshot of one entity.

        Args:
            entity_key: e.g. "material:3"
            position: Ledger position (None = head)

        Returns:
            Snapshot dict, or None if the entity did not exist at that position
        """
        return self.state(position).get(entity_key)
