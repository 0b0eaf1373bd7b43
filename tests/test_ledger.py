"""
Tests for the event ledger collaborator.

- Total order: consecutive positions, one batch per transaction
- Revert: a failing transaction appends nothing
- Point-in-time state and storage-only writes
- JSONL persistence, reload and rollback of failed writes
- Submission timeout before ordering
"""

from __future__ import annotations

import errno
import threading
from pathlib import Path

import pytest

from matprov.errors import StateConflictError, SubmissionTimeout
from matprov.ledger import EventLedger, LedgerEvent, ManualClock, create_event
from matprov.ledger.events import (
    MATERIAL_STATUS_WRITTEN,
    ROLE_REGISTERED,
    material_key,
    role_key,
)
from matprov.domain.roles import register_role


def _register(ledger: EventLedger, identity: str, role: str = "buyer"):
    return ledger.transact(identity, "role.register", lambda state, now: register_role(state, identity, role))


def test_transact_assigns_consecutive_positions(ledger: EventLedger) -> None:
    first = _register(ledger, "0xa")
    second = _register(ledger, "0xb")

    assert first.ref == 1
    assert second.ref == 2
    assert [e.position for e in ledger.stream_events()] == [1, 2]
    assert first.batch == 1
    assert second.batch == 2
    assert ledger.head == 2


def test_failed_transaction_appends_nothing(ledger: EventLedger) -> None:
    _register(ledger, "0xa")

    with pytest.raises(StateConflictError) as exc:
        _register(ledger, "0xa", "supplier")

    assert exc.value.reason == "AlreadyRegistered"
    assert ledger.head == 1


def test_events_stamped_with_ledger_time(ledger: EventLedger, clock: ManualClock) -> None:
    clock.advance(42)
    receipt = _register(ledger, "0xa")
    assert receipt.timestamp == clock.now()
    assert ledger.event_at(1).timestamp == clock.now()


def test_get_state_is_point_in_time(ledger: EventLedger) -> None:
    _register(ledger, "0xa")
    _register(ledger, "0xb")

    assert ledger.get_state(role_key("0xb"), position=1) is None
    assert ledger.get_state(role_key("0xb"))["token_id"] == 2
    assert ledger.get_state(role_key("0xa"), position=1)["role"] == 0


def test_stream_events_filters_and_restarts(ledger: EventLedger) -> None:
    for identity in ("0xa", "0xb", "0xc"):
        _register(ledger, identity)

    assert [e.position for e in ledger.stream_events(from_position=2)] == [2, 3]
    assert [e.event_type for e in ledger.stream_events([ROLE_REGISTERED])] == [ROLE_REGISTERED] * 3
    # Restartable: a second iteration yields the same events
    assert list(ledger.stream_events()) == list(ledger.stream_events())


def test_storage_only_writes_hidden_from_stream(certified_ledger: EventLedger) -> None:
    ledger = certified_ledger
    before = [e.position for e in ledger.stream_events()]

    ledger.append_event(
        create_event(MATERIAL_STATUS_WRITTEN, material_key(1), "0xlegacy", payload={"token_id": 1, "status": 1})
    )

    assert [e.position for e in ledger.stream_events()] == before
    assert ledger.head == before[-1] + 1
    assert ledger.get_state(material_key(1))["status"] == 1
    assert [e.event_type for e in ledger.stream_events(from_position=ledger.head, include_storage=True)] == [
        MATERIAL_STATUS_WRITTEN
    ]


def test_append_rejects_events_that_do_not_fold(ledger: EventLedger) -> None:
    bad = create_event(MATERIAL_STATUS_WRITTEN, material_key(99), "0xlegacy", payload={"token_id": 99, "status": 1})
    with pytest.raises(ValueError):
        ledger.append_event(bad)
    assert ledger.head == 0


def test_invalid_event_type_rejected() -> None:
    with pytest.raises(ValueError):
        LedgerEvent(event_type="material.exploded", subject="material:1", actor="0xa", timestamp=0)


def test_file_backed_ledger_persists_and_reloads(tmp_path: Path, clock: ManualClock) -> None:
    path = tmp_path / "ledger.jsonl"
    ledger = EventLedger(path, clock=clock)
    _register(ledger, "0xa")
    _register(ledger, "0xb", "supplier")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert LedgerEvent.from_json(lines[1]).payload["identity"] == "0xb"

    reopened = EventLedger(path, clock=clock)
    assert reopened.head == 2
    assert reopened.state().roles["0xb"].token_id == 2
    assert [e.digest() for e in reopened.stream_events()] == [e.digest() for e in ledger.stream_events()]


def test_reload_picks_up_external_appends(tmp_path: Path, clock: ManualClock) -> None:
    path = tmp_path / "ledger.jsonl"
    reader = EventLedger(path, clock=clock)
    assert reader.head == 0

    writer = EventLedger(path, clock=clock)
    _register(writer, "0xa")

    assert reader.head == 0
    reader.reload()
    assert reader.head == 1


class _DiskFull:
    """Ledger file that accepts half of the first write, then fails."""

    def __init__(self, f):
        self.f = f
        self.writes = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.f.close()

    def seek(self, *args):
        return self.f.seek(*args)

    def truncate(self, size):
        return self.f.truncate(size)

    def write(self, data):
        self.writes += 1
        if self.writes > 1:
            raise OSError(errno.ENOSPC, "No space left on device")
        return self.f.write(data[: len(data) // 2])


def test_failed_write_leaves_file_unchanged(
    tmp_path: Path, clock: ManualClock, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = tmp_path / "ledger.jsonl"
    ledger = EventLedger(path, clock=clock)
    _register(ledger, "0xa")
    size = path.stat().st_size

    real_open = Path.open

    def open_full_disk(self, mode="r", *args, **kwargs):
        f = real_open(self, mode, *args, **kwargs)
        return _DiskFull(f) if self == path and "a" in mode else f

    monkeypatch.setattr(Path, "open", open_full_disk)
    with pytest.raises(OSError):
        _register(ledger, "0xb")
    monkeypatch.undo()

    assert path.stat().st_size == size
    assert ledger.head == 1
    assert ledger.get_state(role_key("0xb")) is None

    assert _register(ledger, "0xb").ref == 2
    reopened = EventLedger(path, clock=clock)
    assert reopened.head == 2
    assert [e.digest() for e in reopened.stream_events()] == [e.digest() for e in ledger.stream_events()]


def test_load_rejects_position_gap(tmp_path: Path, clock: ManualClock) -> None:
    path = tmp_path / "ledger.jsonl"
    ledger = EventLedger(path, clock=clock)
    _register(ledger, "0xa")
    _register(ledger, "0xb")

    lines = path.read_text(encoding="utf-8").splitlines()
    path.write_text(lines[1] + "\n", encoding="utf-8")

    with pytest.raises(ValueError, match="discontinuity"):
        EventLedger(path, clock=clock).head


def test_submission_timeout_before_ordering(ledger: EventLedger) -> None:
    held = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with ledger._lock:
            held.set()
            release.wait(5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    held.wait(5)
    try:
        with pytest.raises(SubmissionTimeout):
            ledger.transact("0xa", "role.register", lambda state, now: register_role(state, "0xa", "buyer"), timeout=0.05)
    finally:
        release.set()
        holder.join()

    assert ledger.head == 0
    assert _register(ledger, "0xa").ref == 1
