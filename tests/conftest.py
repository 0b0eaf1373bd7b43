"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from matprov.config import MatprovConfig
from matprov.ledger import EventLedger, ManualClock
from matprov.metadata_store import MetadataStore
from matprov.service import ProvenanceService

ISSUER = "0xissuer"
SUPPLIER = "0xsupplier"
BUYER = "0xbuyer"
OTHER_BUYER = "0xbuyer2"

START = 1_700_000_000


@pytest.fixture
def clock() -> ManualClock:
    """Deterministic ledger time."""
    return ManualClock(START)


@pytest.fixture
def config() -> MatprovConfig:
    return MatprovConfig(issuer=ISSUER, submit_timeout=None)


@pytest.fixture
def ledger(clock: ManualClock) -> EventLedger:
    """In-memory ledger."""
    return EventLedger(None, clock=clock)


@pytest.fixture
def metadata_store(tmp_path: Path) -> MetadataStore:
    return MetadataStore(tmp_path / "metadata")


@pytest.fixture
def service(ledger: EventLedger, config: MatprovConfig, metadata_store: MetadataStore, tmp_path: Path) -> ProvenanceService:
    """Service over an in-memory ledger, auditing to tmp_path."""
    return ProvenanceService(ledger, config, metadata=metadata_store, audit_dir=tmp_path)


@pytest.fixture
def certified(service: ProvenanceService) -> ProvenanceService:
    """Service with a certified supplier and two registered buyers."""
    service.register(SUPPLIER, "supplier")
    service.register(BUYER, "buyer")
    service.register(OTHER_BUYER, "buyer")
    service.issue_certificate(ISSUER, SUPPLIER, 0, "")
    return service


@pytest.fixture
def minted(certified: ProvenanceService) -> int:
    """Token id of one Available material owned by SUPPLIER."""
    return certified.mint(SUPPLIER, "")


@pytest.fixture
def certified_ledger(certified: ProvenanceService, minted: int) -> EventLedger:
    """Ledger holding the certified setup and material #1."""
    return certified.ledger
