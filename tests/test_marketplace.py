"""
Tests for the fixed-price marketplace.

- Listing requires ownership, marketplace approval and a positive price
- Purchase is atomic: sale, payment to seller and transfer in one batch
- Exact payment policy (under- and overpayment rejected)
- Concurrent purchases of one listing: exactly one wins
"""

from __future__ import annotations

import threading

import pytest

from conftest import BUYER, OTHER_BUYER, SUPPLIER
from matprov.errors import AUTHORIZATION, NOT_FOUND, STATE_CONFLICT, VALIDATION, DomainError
from matprov.ledger.events import LISTING_SOLD, MATERIAL_TRANSFERRED
from matprov.models import MaterialStatus
from matprov.service import ProvenanceService


def _fails(kind: str, reason: str, fn, *args) -> DomainError:
    with pytest.raises(DomainError) as exc:
        fn(*args)
    assert (exc.value.kind, exc.value.reason) == (kind, reason)
    return exc.value


@pytest.fixture
def listed(certified: ProvenanceService, minted: int) -> int:
    """Material #1 approved for the marketplace and listed at 100."""
    certified.approve(SUPPLIER, minted)
    certified.list(SUPPLIER, "material", minted, 100)
    return minted


# --- Listing ---


def test_list_requires_approval(certified: ProvenanceService, minted: int) -> None:
    _fails(AUTHORIZATION, "NotApproved", certified.list, SUPPLIER, "material", minted, 100)
    certified.approve(SUPPLIER, minted)
    assert certified.list(SUPPLIER, "material", minted, 100) == ("material", minted)


def test_list_accepts_operator_for_all(certified: ProvenanceService, minted: int) -> None:
    certified.set_operator(SUPPLIER, certified.marketplace.operator, True)
    assert certified.list(SUPPLIER, "material", minted, 100) == ("material", minted)


def test_list_requires_owner(certified: ProvenanceService, minted: int) -> None:
    certified.approve(SUPPLIER, minted)
    _fails(AUTHORIZATION, "NotOwner", certified.list, BUYER, "material", minted, 100)


def test_list_validates_price_and_asset(certified: ProvenanceService, minted: int) -> None:
    certified.approve(SUPPLIER, minted)
    _fails(VALIDATION, "InvalidPrice", certified.list, SUPPLIER, "material", minted, 0)
    _fails(VALIDATION, "InvalidPrice", certified.list, SUPPLIER, "material", minted, -1)
    _fails(VALIDATION, "UnknownAsset", certified.list, SUPPLIER, "certificate", minted, 100)
    _fails(NOT_FOUND, "UnknownMaterial", certified.list, SUPPLIER, "material", 99, 100)


def test_list_twice_conflicts(certified: ProvenanceService, listed: int) -> None:
    _fails(STATE_CONFLICT, "AlreadyListed", certified.list, SUPPLIER, "material", listed, 200)


def test_assembled_asset_cannot_be_listed(certified: ProvenanceService, minted: int) -> None:
    certified.mint(SUPPLIER, "", None, [minted])
    certified.approve(SUPPLIER, minted)
    _fails(STATE_CONFLICT, "Terminal", certified.list, SUPPLIER, "material", minted, 100)


def test_cancel_listing(certified: ProvenanceService, listed: int) -> None:
    _fails(AUTHORIZATION, "NotSeller", certified.cancel, BUYER, "material", listed)
    assert certified.cancel(SUPPLIER, "material", listed) == ("material", listed)
    assert certified.get_listing("material", listed).active is False

    _fails(STATE_CONFLICT, "AlreadyInactive", certified.cancel, SUPPLIER, "material", listed)
    _fails(NOT_FOUND, "NotListed", certified.buy, BUYER, "material", listed, 100)
    _fails(NOT_FOUND, "NoListing", certified.cancel, SUPPLIER, "material", 99)


# --- Buying ---


def test_buy_transfers_and_pays_seller(certified: ProvenanceService, listed: int) -> None:
    head = certified.ledger.head
    assert certified.buy(BUYER, "material", listed, 100) == ("material", listed)

    assert certified.get_material(listed).owner == BUYER
    assert certified.get_listing("material", listed).active is False
    assert certified.get_proceeds(SUPPLIER) == 100
    # Per-token approval does not survive the transfer
    assert certified.materials.is_authorized(listed, certified.marketplace.operator) is False

    events = list(certified.ledger.stream_events(from_position=head + 1))
    assert [e.event_type for e in events] == [LISTING_SOLD, MATERIAL_TRANSFERRED]
    assert len({e.batch for e in events}) == 1


def test_buy_payment_must_match_price(certified: ProvenanceService, listed: int) -> None:
    _fails(VALIDATION, "InsufficientFunds", certified.buy, BUYER, "material", listed, 99)
    _fails(VALIDATION, "Overpayment", certified.buy, BUYER, "material", listed, 101)
    assert certified.get_material(listed).owner == SUPPLIER
    assert certified.get_listing("material", listed).active is True


def test_buy_unlisted_fails(certified: ProvenanceService, minted: int) -> None:
    _fails(NOT_FOUND, "NotListed", certified.buy, BUYER, "material", minted, 100)


def test_buy_after_approval_withdrawn(certified: ProvenanceService, listed: int) -> None:
    certified.approve(SUPPLIER, listed, "")
    _fails(AUTHORIZATION, "NotApproved", certified.buy, BUYER, "material", listed, 100)


def test_buy_after_assembly_fails(certified: ProvenanceService, listed: int) -> None:
    certified.mint(SUPPLIER, "", None, [listed])
    assert certified.get_material(listed).status == MaterialStatus.ASSEMBLED
    _fails(STATE_CONFLICT, "Terminal", certified.buy, BUYER, "material", listed, 100)


def test_buyer_can_relist_after_purchase(certified: ProvenanceService, listed: int) -> None:
    certified.buy(BUYER, "material", listed, 100)

    _fails(AUTHORIZATION, "NotApproved", certified.list, BUYER, "material", listed, 150)
    certified.approve(BUYER, listed)
    certified.list(BUYER, "material", listed, 150)
    certified.buy(OTHER_BUYER, "material", listed, 150)

    assert certified.get_material(listed).owner == OTHER_BUYER
    assert certified.get_proceeds(SUPPLIER) == 100
    assert certified.get_proceeds(BUYER) == 150


def test_concurrent_buys_exactly_one_wins(certified: ProvenanceService, listed: int) -> None:
    barrier = threading.Barrier(2)
    outcomes: dict[str, object] = {}

    def attempt(buyer: str) -> None:
        barrier.wait()
        try:
            outcomes[buyer] = certified.buy(buyer, "material", listed, 100)
        except DomainError as e:
            outcomes[buyer] = e

    threads = [threading.Thread(target=attempt, args=(b,)) for b in (BUYER, OTHER_BUYER)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [b for b, o in outcomes.items() if o == ("material", listed)]
    losers = [o for o in outcomes.values() if isinstance(o, DomainError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert (losers[0].kind, losers[0].reason) == (NOT_FOUND, "NotListed")
    assert certified.get_material(listed).owner == winners[0]
    assert certified.get_proceeds(SUPPLIER) == 100
