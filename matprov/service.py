"""
Provenance service: the query and mutation surfaces over one ledger.

Wires the domain components, the indexer and the metadata store to a single
``EventLedger``. Mutations return the derived identifier of a finalized
transaction or raise the domain failure; either way the outcome is written
to the audit log. Only ``SubmissionTimeout`` is retried, because a timed-out
submission was never ordered.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Iterable

from .audit_log import FINALIZED, REVERTED, TIMED_OUT, log_mutation
from .config import MatprovConfig
from .domain import CertificateRegistry, Marketplace, MaterialLedger, RoleRegistry
from .domain.marketplace import ListingKey
from .errors import DomainError, SubmissionTimeout
from .indexer import ActiveListing, HistoryEntry, IndexStatus, LedgerIndexer, ListingFilter
from .ledger import Clock, EventLedger, Receipt
from .metadata_store import MetadataStore
from .models import Certificate, Listing, Material, MaterialStatus, Role, normalize_identity

logger = logging.getLogger(__name__)


class ProvenanceService:
    """Facade exposing the provenance operations."""

    def __init__(
        self,
        ledger: EventLedger,
        config: MatprovConfig | None = None,
        *,
        metadata: MetadataStore | None = None,
        audit_dir: Path | None = None,
        auto_sync: bool = True,
    ):
        """
        Args:
            ledger: Ledger collaborator
            config: Settings (defaults if None)
            metadata: Display metadata store used by listing filters
            audit_dir: Directory for audit.log (None = no audit log)
            auto_sync: Sync the indexer before every indexed query
        """
        self.config = config or MatprovConfig()
        self.ledger = ledger
        self.metadata = metadata
        self.audit_dir = audit_dir
        self.auto_sync = auto_sync

        self.roles = RoleRegistry(ledger)
        self.certificates = CertificateRegistry(ledger, self.config.issuer)
        self.materials = MaterialLedger(ledger, default_lifetime=self.config.default_lifetime_seconds)
        self.marketplace = Marketplace(ledger, self.config.operator)
        self.indexer = LedgerIndexer(
            ledger,
            probe_window=self.config.probe_window,
            batch_size=self.config.batch_size,
            resolve_metadata=metadata.get_json if metadata is not None else None,
        )

    @classmethod
    def open(
        cls,
        data_dir: Path,
        config: MatprovConfig | None = None,
        clock: Clock | None = None,
    ) -> ProvenanceService:
        """File-backed service rooted at ``data_dir`` (ledger, metadata, audit log)."""
        config = config or MatprovConfig()
        ledger = EventLedger(config.resolve_ledger_path(data_dir), clock=clock)
        return cls(
            ledger,
            config,
            metadata=MetadataStore(data_dir / "metadata"),
            audit_dir=data_dir,
        )

    # --- Submission ---

    def _audit(self, operation: str, actor: str, outcome: str, **fields: Any) -> None:
        if self.audit_dir is not None:
            log_mutation(self.audit_dir, operation, actor, outcome, **fields)

    def _submit(
        self,
        operation: str,
        actor: str,
        call: Callable[[float | None], Receipt],
        arguments: dict[str, Any],
    ) -> Any:
        attempts = self.config.submit_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                receipt = call(self.config.submit_timeout)
            except SubmissionTimeout as e:
                if attempt < attempts:
                    logger.info("%s by %s not ordered (attempt %d/%d), retrying", operation, actor, attempt, attempts)
                    continue
                logger.warning("%s by %s timed out: %s", operation, actor, e)
                self._audit(
                    operation, actor, TIMED_OUT,
                    kind="SubmissionTimeout", reason="Timeout", message=str(e), arguments=arguments,
                )
                raise
            except DomainError as e:
                logger.info("%s by %s reverted: %s/%s", operation, actor, e.kind, e.reason)
                self._audit(
                    operation, actor, REVERTED,
                    kind=e.kind, reason=e.reason, message=e.message, arguments=arguments,
                )
                raise

            logger.info("%s by %s finalized: %s", operation, actor, receipt.ref)
            self._audit(
                operation, actor, FINALIZED,
                ref=receipt.ref, positions=[e.position for e in receipt.events], arguments=arguments,
            )
            return receipt.ref
        raise AssertionError("unreachable")

    # --- Mutation surface ---

    def register(self, identity: str, role: Role | int | str) -> int:
        return self._submit(
            "role.register", identity,
            lambda timeout: self.roles.register(identity, role, timeout=timeout),
            {"role": str(role)},
        )

    def issue_certificate(self, issuer: str, holder: str, expires_at: int = 0, metadata_ref: str = "") -> int:
        return self._submit(
            "certificate.issue", issuer,
            lambda timeout: self.certificates.issue(issuer, holder, expires_at, metadata_ref, timeout=timeout),
            {"holder": holder, "expires_at": expires_at, "metadata_ref": metadata_ref},
        )

    def revoke_certificate(self, issuer: str, holder: str) -> int:
        return self._submit(
            "certificate.revoke", issuer,
            lambda timeout: self.certificates.revoke(issuer, holder, timeout=timeout),
            {"holder": holder},
        )

    def mint(
        self,
        caller: str,
        metadata_ref: str,
        expires_at: int | None = None,
        composed_of: Iterable[int] | None = None,
    ) -> int:
        components = list(composed_of or ())
        return self._submit(
            "material.mint", caller,
            lambda timeout: self.materials.mint(caller, metadata_ref, expires_at, components, timeout=timeout),
            {"metadata_ref": metadata_ref, "expires_at": expires_at, "composed_of": components},
        )

    def update_status(self, caller: str, token_id: int, new_status: MaterialStatus | int | str) -> int:
        return self._submit(
            "material.update_status", caller,
            lambda timeout: self.materials.update_status(caller, token_id, new_status, timeout=timeout),
            {"token_id": token_id, "status": str(new_status)},
        )

    def approve(self, caller: str, token_id: int, operator: str | None = None) -> int:
        """Approve ``operator`` (default: the marketplace) for one material; "" clears."""
        operator = self.marketplace.operator if operator is None else operator
        return self._submit(
            "material.approve", caller,
            lambda timeout: self.materials.approve(caller, token_id, operator or None, timeout=timeout),
            {"token_id": token_id, "operator": operator},
        )

    def set_operator(self, caller: str, operator: str, approved: bool = True) -> str:
        return self._submit(
            "material.set_operator", caller,
            lambda timeout: self.materials.set_operator(caller, operator, approved, timeout=timeout),
            {"operator": operator, "approved": approved},
        )

    def list(self, seller: str, asset_ref: str, token_id: int, price: int) -> ListingKey:
        return self._submit(
            "market.list", seller,
            lambda timeout: self.marketplace.list(seller, asset_ref, token_id, price, timeout=timeout),
            {"asset_ref": asset_ref, "token_id": token_id, "price": price},
        )

    def cancel(self, caller: str, asset_ref: str, token_id: int) -> ListingKey:
        return self._submit(
            "market.cancel", caller,
            lambda timeout: self.marketplace.cancel(caller, asset_ref, token_id, timeout=timeout),
            {"asset_ref": asset_ref, "token_id": token_id},
        )

    def buy(self, buyer: str, asset_ref: str, token_id: int, payment: int) -> ListingKey:
        return self._submit(
            "market.buy", buyer,
            lambda timeout: self.marketplace.buy(buyer, asset_ref, token_id, payment, timeout=timeout),
            {"asset_ref": asset_ref, "token_id": token_id, "payment": payment},
        )

    # --- Query surface (ledger state) ---

    def get_role(self, identity: str) -> Role:
        return self.roles.get_role(identity)

    def is_certificate_valid(self, holder: str) -> bool:
        return self.certificates.is_valid(holder)

    def get_certificate(self, holder: str) -> Certificate:
        return self.certificates.get_certificate(holder)

    def get_material(self, token_id: int) -> Material:
        return self.materials.get_material(token_id)

    def get_expiration(self, token_id: int) -> int:
        return self.materials.get_expiration(token_id)

    def get_listing(self, asset_ref: str, token_id: int) -> Listing:
        return self.marketplace.get_listing(asset_ref, token_id)

    def get_proceeds(self, identity: str) -> int:
        return self.marketplace.proceeds_of(identity)

    def get_provenance(self, token_id: int) -> dict[str, Any]:
        return self.materials.components_of(token_id)

    # --- Query surface (indexed views) ---

    def sync(self) -> IndexStatus:
        self.indexer.sync()
        return self.indexer.status()

    def _views(self) -> LedgerIndexer:
        if self.auto_sync:
            self.indexer.sync()
        return self.indexer

    def get_ownership_set(self, identity: str) -> list[int]:
        return self._views().ownership_set(normalize_identity(identity))

    def get_all_known_ids(self) -> list[int]:
        return self._views().all_known_ids()

    def get_active_listings(self, listing_filter: ListingFilter | None = None) -> list[ActiveListing]:
        return self._views().active_listings(listing_filter)

    def get_history(self, token_id: int) -> list[HistoryEntry]:
        return self._views().history(int(token_id))

    def index_status(self) -> IndexStatus:
        return self.indexer.status()
