"""
Tests for role binding and supplier certificates.

Roles are bound once and never change. Certificates are issuer-controlled,
expire at a boundary (valid strictly before expires_at) and revocation is
permanent.
"""

from __future__ import annotations

import pytest

from conftest import BUYER, ISSUER, SUPPLIER
from matprov.errors import (
    AUTHORIZATION,
    NOT_FOUND,
    STATE_CONFLICT,
    VALIDATION,
    DomainError,
)
from matprov.ledger import ManualClock
from matprov.models import Role
from matprov.service import ProvenanceService


def _fails(kind: str, reason: str, fn, *args) -> DomainError:
    with pytest.raises(DomainError) as exc:
        fn(*args)
    assert (exc.value.kind, exc.value.reason) == (kind, reason)
    return exc.value


# --- Roles ---


def test_register_binds_role_permanently(service: ProvenanceService) -> None:
    assert service.register(SUPPLIER, "supplier") == 1
    assert service.get_role(SUPPLIER) == Role.SUPPLIER

    _fails(STATE_CONFLICT, "AlreadyRegistered", service.register, SUPPLIER, "buyer")
    assert service.get_role(SUPPLIER) == Role.SUPPLIER


def test_register_accepts_ordinals_and_names(service: ProvenanceService) -> None:
    service.register("0xa", 0)
    service.register("0xb", "Supplier")
    service.register("0xc", Role.BUYER)
    assert [service.get_role(i) for i in ("0xa", "0xb", "0xc")] == [Role.BUYER, Role.SUPPLIER, Role.BUYER]


def test_register_rejects_unknown_role(service: ProvenanceService) -> None:
    _fails(VALIDATION, "UnknownRole", service.register, "0xa", "architect")
    _fails(VALIDATION, "UnknownRole", service.register, "0xa", 7)


def test_identities_are_normalized(service: ProvenanceService) -> None:
    service.register("  0xABC ", "buyer")
    assert service.get_role("0xabc") == Role.BUYER
    _fails(STATE_CONFLICT, "AlreadyRegistered", service.register, "0xabc", "buyer")
    _fails(VALIDATION, "MalformedIdentity", service.register, "   ", "buyer")


def test_unregistered_identity_not_found(service: ProvenanceService) -> None:
    _fails(NOT_FOUND, "NotRegistered", service.get_role, "0xnobody")
    assert service.roles.has_role("0xnobody") is False


# --- Certificates ---


def test_only_issuer_can_issue(service: ProvenanceService) -> None:
    _fails(AUTHORIZATION, "NotIssuer", service.issue_certificate, SUPPLIER, SUPPLIER, 0, "")
    assert service.is_certificate_valid(SUPPLIER) is False


def test_certificate_without_expiry_is_valid(service: ProvenanceService) -> None:
    cert_id = service.issue_certificate(ISSUER, SUPPLIER, 0, "cas:meta")
    assert cert_id == 1
    assert service.is_certificate_valid(SUPPLIER) is True
    assert service.get_certificate(SUPPLIER).metadata_ref == "cas:meta"


def test_certificate_expiry_boundary(service: ProvenanceService, clock: ManualClock) -> None:
    expires_at = clock.now() + 100
    service.issue_certificate(ISSUER, SUPPLIER, expires_at, "")

    clock.set(expires_at - 1)
    assert service.is_certificate_valid(SUPPLIER) is True

    clock.set(expires_at)
    assert service.is_certificate_valid(SUPPLIER) is False

    clock.set(expires_at + 1)
    assert service.is_certificate_valid(SUPPLIER) is False


def test_issue_rejects_past_expiration(service: ProvenanceService, clock: ManualClock) -> None:
    _fails(VALIDATION, "ExpirationInPast", service.issue_certificate, ISSUER, SUPPLIER, clock.now(), "")
    _fails(VALIDATION, "ExpirationInPast", service.issue_certificate, ISSUER, SUPPLIER, clock.now() - 1, "")
    _fails(VALIDATION, "InvalidExpiration", service.issue_certificate, ISSUER, SUPPLIER, -5, "")


def test_issue_twice_conflicts(service: ProvenanceService) -> None:
    service.issue_certificate(ISSUER, SUPPLIER, 0, "")
    _fails(STATE_CONFLICT, "AlreadyCertified", service.issue_certificate, ISSUER, SUPPLIER, 0, "")


def test_revocation_is_permanent(service: ProvenanceService) -> None:
    cert_id = service.issue_certificate(ISSUER, SUPPLIER, 0, "")
    assert service.revoke_certificate(ISSUER, SUPPLIER) == cert_id
    assert service.is_certificate_valid(SUPPLIER) is False
    assert service.get_certificate(SUPPLIER).revoked is True

    _fails(STATE_CONFLICT, "AlreadyRevoked", service.revoke_certificate, ISSUER, SUPPLIER)
    _fails(STATE_CONFLICT, "CertificateRevoked", service.issue_certificate, ISSUER, SUPPLIER, 0, "")
    assert service.is_certificate_valid(SUPPLIER) is False


def test_revoke_requires_issuer_and_certificate(service: ProvenanceService) -> None:
    _fails(NOT_FOUND, "NoCertificate", service.revoke_certificate, ISSUER, BUYER)
    service.issue_certificate(ISSUER, SUPPLIER, 0, "")
    _fails(AUTHORIZATION, "NotIssuer", service.revoke_certificate, BUYER, SUPPLIER)
    assert service.is_certificate_valid(SUPPLIER) is True


def test_validity_never_fails(service: ProvenanceService) -> None:
    assert service.is_certificate_valid("0xunknown") is False
    assert service.is_certificate_valid("") is False
