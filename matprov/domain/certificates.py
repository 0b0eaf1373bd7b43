"""
Supplier certificate registry.

Certificates are issued and revoked only by the registry controller. Each
holder gets at most one certificate, ever: revocation is irreversible and
there is no reissue path.
"""

from __future__ import annotations

from ..errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from ..ledger.events import (
    CERTIFICATE_ISSUED,
    CERTIFICATE_REVOKED,
    LedgerEvent,
    certificate_key,
    create_event,
)
from ..ledger.state import LedgerState
from ..ledger.store import EventLedger, Receipt
from ..models import Certificate, normalize_identity


def is_certificate_valid(state: LedgerState, holder: str, now: int) -> bool:
    """Validity predicate: not revoked and (no expiry or now < expires_at). Never fails."""
    try:
        holder = normalize_identity(holder)
    except ValidationError:
        return False
    cert = state.certificates.get(holder)
    return cert is not None and cert.is_valid(now)


def issue_certificate(
    state: LedgerState,
    now: int,
    controller: str,
    issuer: str,
    holder: str,
    expires_at: int,
    metadata_ref: str,
) -> tuple[int, list[LedgerEvent]]:
    """Issue a certificate to ``holder``; returns the certificate id."""
    issuer = normalize_identity(issuer)
    holder = normalize_identity(holder)

    if issuer != controller:
        raise AuthorizationError("NotIssuer", f"{issuer} is not the certificate issuer")

    existing = state.certificates.get(holder)
    if existing is not None:
        if existing.revoked:
            raise StateConflictError(
                "CertificateRevoked",
                f"{holder}'s certificate #{existing.certificate_id} was revoked; no reissue path",
            )
        raise StateConflictError("AlreadyCertified", f"{holder} already holds certificate #{existing.certificate_id}")

    expires_at = int(expires_at)
    if expires_at < 0:
        raise ValidationError("InvalidExpiration", f"negative expiration: {expires_at}")
    if expires_at != 0 and expires_at <= now:
        raise ValidationError("ExpirationInPast", f"expiration {expires_at} is not after {now}")

    certificate_id = state.certificate_count + 1
    event = create_event(
        CERTIFICATE_ISSUED,
        certificate_key(holder),
        issuer,
        payload={
            "certificate_id": certificate_id,
            "holder": holder,
            "expires_at": expires_at,
            "metadata_ref": metadata_ref or "",
        },
    )
    return certificate_id, [event]


def revoke_certificate(
    state: LedgerState,
    controller: str,
    issuer: str,
    holder: str,
) -> tuple[int, list[LedgerEvent]]:
    """Revoke ``holder``'s certificate; returns the certificate id."""
    issuer = normalize_identity(issuer)
    holder = normalize_identity(holder)

    if issuer != controller:
        raise AuthorizationError("NotIssuer", f"{issuer} is not the certificate issuer")

    cert = state.certificates.get(holder)
    if cert is None:
        raise NotFoundError("NoCertificate", f"{holder} has no certificate")
    if cert.revoked:
        raise StateConflictError("AlreadyRevoked", f"certificate #{cert.certificate_id} is already revoked")

    event = create_event(
        CERTIFICATE_REVOKED,
        certificate_key(holder),
        issuer,
        payload={"certificate_id": cert.certificate_id, "holder": holder},
    )
    return cert.certificate_id, [event]


class CertificateRegistry:
    """Issuer-controlled, time-bounded, revocable supplier credentials."""

    def __init__(self, ledger: EventLedger, controller: str):
        """
        Args:
            ledger: Ledger collaborator
            controller: Identity allowed to issue and revoke certificates
        """
        self.ledger = ledger
        self.controller = normalize_identity(controller)

    def issue(
        self,
        issuer: str,
        holder: str,
        expires_at: int = 0,
        metadata_ref: str = "",
        *,
        timeout: float | None = None,
    ) -> Receipt:
        return self.ledger.transact(
            issuer,
            "certificate.issue",
            lambda state, now: issue_certificate(
                state, now, self.controller, issuer, holder, expires_at, metadata_ref
            ),
            timeout=timeout,
        )

    def revoke(self, issuer: str, holder: str, *, timeout: float | None = None) -> Receipt:
        return self.ledger.transact(
            issuer,
            "certificate.revoke",
            lambda state, now: revoke_certificate(state, self.controller, issuer, holder),
            timeout=timeout,
        )

    def is_valid(self, holder: str) -> bool:
        return is_certificate_valid(self.ledger.state(), holder, self.ledger.now())

    def get_certificate(self, holder: str) -> Certificate:
        holder = normalize_identity(holder)
        cert = self.ledger.state().certificates.get(holder)
        if cert is None:
            raise NotFoundError("NoCertificate", f"{holder} has no certificate")
        return cert
