"""
Tests for the material lifecycle.

- Mint gating by role and certificate validity
- Default and explicit expiration
- The full status transition table (4 x 4)
- Composition forces components to Assembled and records provenance
- Transfer authorization
"""

from __future__ import annotations

import pytest

from conftest import BUYER, ISSUER, SUPPLIER
from matprov.domain.materials import SIX_MONTHS
from matprov.errors import AUTHORIZATION, NOT_FOUND, STATE_CONFLICT, VALIDATION, DomainError
from matprov.ledger import ManualClock
from matprov.models import TRANSITIONS, MaterialStatus
from matprov.service import ProvenanceService


def _fails(kind: str, reason: str, fn, *args) -> DomainError:
    with pytest.raises(DomainError) as exc:
        fn(*args)
    assert (exc.value.kind, exc.value.reason) == (kind, reason)
    return exc.value


# Shortest path from Available to each status
PATHS = {
    MaterialStatus.AVAILABLE: [],
    MaterialStatus.IN_TRANSIT: [MaterialStatus.IN_TRANSIT],
    MaterialStatus.DELIVERED: [MaterialStatus.IN_TRANSIT, MaterialStatus.DELIVERED],
    MaterialStatus.ASSEMBLED: [MaterialStatus.IN_TRANSIT, MaterialStatus.DELIVERED, MaterialStatus.ASSEMBLED],
}


def _material_in(service: ProvenanceService, status: MaterialStatus) -> int:
    token_id = service.mint(SUPPLIER, "")
    for step in PATHS[status]:
        service.update_status(SUPPLIER, token_id, step)
    assert service.get_material(token_id).status == status
    return token_id


# --- Minting ---


def test_mint_assigns_sequential_ids_and_defaults(certified: ProvenanceService, clock: ManualClock) -> None:
    first = certified.mint(SUPPLIER, "cas:one")
    second = certified.mint(SUPPLIER, "cas:two")

    assert (first, second) == (1, 2)
    material = certified.get_material(first)
    assert material.owner == SUPPLIER
    assert material.status == MaterialStatus.AVAILABLE
    assert material.metadata_ref == "cas:one"
    assert certified.get_expiration(first) == clock.now() + SIX_MONTHS


def test_mint_with_explicit_expiration(certified: ProvenanceService, clock: ManualClock) -> None:
    token_id = certified.mint(SUPPLIER, "", clock.now() + 10)
    assert certified.get_expiration(token_id) == clock.now() + 10
    _fails(VALIDATION, "ExpirationInPast", certified.mint, SUPPLIER, "", clock.now())


def test_mint_requires_supplier_role(certified: ProvenanceService) -> None:
    _fails(AUTHORIZATION, "NotSupplier", certified.mint, BUYER, "")
    _fails(AUTHORIZATION, "NotSupplier", certified.mint, "0xunregistered", "")


def test_mint_requires_valid_certificate(service: ProvenanceService, clock: ManualClock) -> None:
    service.register(SUPPLIER, "supplier")
    _fails(VALIDATION, "NoValidCertificate", service.mint, SUPPLIER, "")

    service.issue_certificate(ISSUER, SUPPLIER, clock.now() + 50, "")
    assert service.mint(SUPPLIER, "") == 1

    clock.advance(50)
    _fails(VALIDATION, "NoValidCertificate", service.mint, SUPPLIER, "")


def test_mint_after_revocation_fails(certified: ProvenanceService) -> None:
    certified.mint(SUPPLIER, "")
    certified.revoke_certificate(ISSUER, SUPPLIER)
    _fails(VALIDATION, "NoValidCertificate", certified.mint, SUPPLIER, "")


def test_unknown_material_not_found(certified: ProvenanceService) -> None:
    _fails(NOT_FOUND, "UnknownMaterial", certified.get_material, 42)
    _fails(NOT_FOUND, "UnknownMaterial", certified.get_expiration, 42)
    _fails(NOT_FOUND, "UnknownMaterial", certified.update_status, SUPPLIER, 42, "InTransit")


# --- Transitions ---


@pytest.mark.parametrize("start", list(MaterialStatus))
@pytest.mark.parametrize("target", list(MaterialStatus))
def test_transition_table(certified: ProvenanceService, start: MaterialStatus, target: MaterialStatus) -> None:
    token_id = _material_in(certified, start)

    if start == MaterialStatus.ASSEMBLED:
        _fails(STATE_CONFLICT, "Terminal", certified.update_status, SUPPLIER, token_id, target)
    elif target in TRANSITIONS[start]:
        assert certified.update_status(SUPPLIER, token_id, target) == token_id
        assert certified.get_material(token_id).status == target
    else:
        _fails(STATE_CONFLICT, "InvalidTransition", certified.update_status, SUPPLIER, token_id, target)
        assert certified.get_material(token_id).status == start


def test_status_accepts_labels(certified: ProvenanceService, minted: int) -> None:
    certified.update_status(SUPPLIER, minted, "InTransit")
    certified.update_status(SUPPLIER, minted, "delivered")
    certified.update_status(SUPPLIER, minted, 0)
    assert certified.get_material(minted).status == MaterialStatus.AVAILABLE
    _fails(VALIDATION, "UnknownStatus", certified.update_status, SUPPLIER, minted, "Lost")


def test_only_owner_transitions(certified: ProvenanceService, minted: int) -> None:
    _fails(AUTHORIZATION, "NotOwner", certified.update_status, BUYER, minted, "InTransit")
    assert certified.get_material(minted).status == MaterialStatus.AVAILABLE


# --- Composition ---


def test_composition_assembles_components(certified: ProvenanceService) -> None:
    available = _material_in(certified, MaterialStatus.AVAILABLE)
    in_transit = _material_in(certified, MaterialStatus.IN_TRANSIT)
    delivered = _material_in(certified, MaterialStatus.DELIVERED)

    beam = certified.mint(SUPPLIER, "", None, [available, in_transit, delivered])

    assert certified.get_material(beam).composed_of == (available, in_transit, delivered)
    for component in (available, in_transit, delivered):
        material = certified.get_material(component)
        assert material.status == MaterialStatus.ASSEMBLED
        assert material.assembled_into == beam

    tree = certified.get_provenance(beam)
    assert [c["token_id"] for c in tree["components"]] == [available, in_transit, delivered]
    assert all(c["status"] == "Assembled" for c in tree["components"])


def test_provenance_tree_is_recursive(certified: ProvenanceService) -> None:
    leaf = certified.mint(SUPPLIER, "")
    middle = certified.mint(SUPPLIER, "", None, [leaf])
    top = certified.mint(SUPPLIER, "", None, [middle])

    tree = certified.get_provenance(top)
    assert tree["components"][0]["token_id"] == middle
    assert tree["components"][0]["components"][0]["token_id"] == leaf


def test_assembled_component_cannot_be_reused(certified: ProvenanceService) -> None:
    part = certified.mint(SUPPLIER, "")
    certified.mint(SUPPLIER, "", None, [part])
    _fails(STATE_CONFLICT, "AlreadyAssembled", certified.mint, SUPPLIER, "", None, [part])


def test_composition_checks_components(certified: ProvenanceService) -> None:
    part = certified.mint(SUPPLIER, "")
    _fails(NOT_FOUND, "UnknownMaterial", certified.mint, SUPPLIER, "", None, [part, 99])
    _fails(VALIDATION, "DuplicateComponent", certified.mint, SUPPLIER, "", None, [part, part])
    # Nothing was minted or assembled by the failed attempts
    assert certified.get_material(part).status == MaterialStatus.AVAILABLE
    assert certified.ledger.state().material_count == 1


def test_composition_requires_owning_components(certified: ProvenanceService) -> None:
    other = "0xsupplier2"
    certified.register(other, "supplier")
    certified.issue_certificate(ISSUER, other, 0, "")
    theirs = certified.mint(other, "")
    _fails(AUTHORIZATION, "NotOwner", certified.mint, SUPPLIER, "", None, [theirs])


# --- Authorization ---


def test_approve_and_operator_for_all(certified: ProvenanceService, minted: int) -> None:
    operator = certified.marketplace.operator
    assert certified.materials.is_authorized(minted, operator) is False

    certified.approve(SUPPLIER, minted)
    assert certified.materials.is_authorized(minted, operator) is True

    certified.approve(SUPPLIER, minted, "")
    assert certified.materials.is_authorized(minted, operator) is False

    certified.set_operator(SUPPLIER, operator, True)
    assert certified.materials.is_authorized(minted, operator) is True
    certified.set_operator(SUPPLIER, operator, False)
    assert certified.materials.is_authorized(minted, operator) is False


def test_approve_requires_owner(certified: ProvenanceService, minted: int) -> None:
    _fails(AUTHORIZATION, "NotOwner", certified.approve, BUYER, minted)
    _fails(VALIDATION, "SelfApproval", certified.approve, SUPPLIER, minted, SUPPLIER)
