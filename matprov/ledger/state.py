"""
World-state projection from the ledger event stream.

The ledger's point-in-time state is computed by folding events - it is never
stored as the source of truth. Domain operations read this state to decide
whether a mutation is admissible; ``get_state`` queries are answered from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from ..models import (
    Certificate,
    Listing,
    Material,
    MaterialStatus,
    Role,
    RoleBinding,
)
from .events import (
    CERTIFICATE_ISSUED,
    CERTIFICATE_REVOKED,
    LISTING_CANCELLED,
    LISTING_CREATED,
    LISTING_SOLD,
    MATERIAL_APPROVED,
    MATERIAL_ASSEMBLED,
    MATERIAL_MINTED,
    MATERIAL_OPERATOR_SET,
    MATERIAL_STATUS_CHANGED,
    MATERIAL_STATUS_WRITTEN,
    MATERIAL_TRANSFERRED,
    ROLE_REGISTERED,
    LedgerEvent,
)


@dataclass
class LedgerState:
    """
    Computed state of every entity at a ledger position.

    Records are frozen dataclasses, so ``copy()`` only has to copy the
    containers; a copy can be handed out without exposing the live state.
    """

    roles: dict[str, RoleBinding] = field(default_factory=dict)
    certificates: dict[str, Certificate] = field(default_factory=dict)
    materials: dict[int, Material] = field(default_factory=dict)
    token_approvals: dict[int, str] = field(default_factory=dict)
    operators: dict[str, frozenset[str]] = field(default_factory=dict)
    listings: dict[tuple[str, int], Listing] = field(default_factory=dict)
    proceeds: dict[str, int] = field(default_factory=dict)

    # Sequence counters for derived identifiers
    role_count: int = 0
    certificate_count: int = 0
    material_count: int = 0

    # Position of the last folded event
    position: int = 0

    def copy(self) -> LedgerState:
        return replace(
            self,
            roles=dict(self.roles),
            certificates=dict(self.certificates),
            materials=dict(self.materials),
            token_approvals=dict(self.token_approvals),
            operators=dict(self.operators),
            listings=dict(self.listings),
            proceeds=dict(self.proceeds),
        )

    # --- Read helpers used by domain operations ---

    def owner_of(self, token_id: int) -> str | None:
        material = self.materials.get(token_id)
        return material.owner if material else None

    def is_authorized(self, token_id: int, operator: str) -> bool:
        """Whether ``operator`` may transfer ``token_id`` on the owner's behalf."""
        material = self.materials.get(token_id)
        if material is None:
            return False
        if self.token_approvals.get(token_id) == operator:
            return True
        return operator in self.operators.get(material.owner, frozenset())

    def get(self, entity_key: str) -> dict[str, Any] | None:
        """
        Point-in-time snapshot of one entity as a plain dict.

        Args:
            entity_key: "role:<id>", "certificate:<holder>", "material:<id>",
                "listing:<asset_ref>:<id>", "proceeds:<id>" or "operator:<owner>"

        Returns:
            Snapshot dict, or None if the entity does not exist at this position
        """
        kind, _, rest = entity_key.partition(":")
        if kind == "role":
            binding = self.roles.get(rest)
            return binding.to_dict() if binding else None
        if kind == "certificate":
            cert = self.certificates.get(rest)
            return cert.to_dict() if cert else None
        if kind == "material":
            material = self.materials.get(_parse_id(rest))
            if material is None:
                return None
            data = material.to_dict()
            data["approved"] = self.token_approvals.get(material.token_id)
            return data
        if kind == "listing":
            asset_ref, _, token = rest.rpartition(":")
            listing = self.listings.get((asset_ref, _parse_id(token)))
            return listing.to_dict() if listing else None
        if kind == "proceeds":
            return {"identity": rest, "amount": self.proceeds.get(rest, 0)}
        if kind == "operator":
            return {"owner": rest, "operators": sorted(self.operators.get(rest, frozenset()))}
        raise ValueError(f"Unknown entity key: {entity_key}")


def _parse_id(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"Malformed entity id: {text!r}") from None


def _material(state: LedgerState, event: LedgerEvent) -> Material:
    token_id = event.token_id
    material = state.materials.get(token_id) if token_id is not None else None
    if material is None:
        raise ValueError(f"{event.event_type} at position {event.position} references unknown material {token_id}")
    return material


def apply_event(state: LedgerState, event: LedgerEvent) -> None:
    """Apply a single event to update state in place."""
    payload = event.payload
    et = event.event_type

    if et == ROLE_REGISTERED:
        token_id = int(payload["token_id"])
        state.roles[payload["identity"]] = RoleBinding(
            identity=payload["identity"],
            role=Role(int(payload["role"])),
            token_id=token_id,
        )
        state.role_count = max(state.role_count, token_id)

    elif et == CERTIFICATE_ISSUED:
        cert_id = int(payload["certificate_id"])
        state.certificates[payload["holder"]] = Certificate(
            certificate_id=cert_id,
            holder=payload["holder"],
            expires_at=int(payload.get("expires_at", 0)),
            metadata_ref=payload.get("metadata_ref", ""),
        )
        state.certificate_count = max(state.certificate_count, cert_id)

    elif et == CERTIFICATE_REVOKED:
        cert = state.certificates.get(payload["holder"])
        if cert is None:
            raise ValueError(f"Revocation at position {event.position} for holder without certificate")
        state.certificates[cert.holder] = replace(cert, revoked=True)

    elif et == MATERIAL_MINTED:
        token_id = int(payload["token_id"])
        state.materials[token_id] = Material(
            token_id=token_id,
            owner=payload["owner"],
            status=MaterialStatus.AVAILABLE,
            expires_at=int(payload.get("expires_at", 0)),
            metadata_ref=payload.get("metadata_ref", ""),
            composed_of=tuple(int(c) for c in payload.get("composed_of", [])),
        )
        state.material_count = max(state.material_count, token_id)

    elif et == MATERIAL_TRANSFERRED:
        material = _material(state, event)
        state.materials[material.token_id] = replace(material, owner=payload["to"])
        state.token_approvals.pop(material.token_id, None)

    elif et in (MATERIAL_STATUS_CHANGED, MATERIAL_STATUS_WRITTEN):
        material = _material(state, event)
        state.materials[material.token_id] = replace(material, status=MaterialStatus(int(payload["status"])))

    elif et == MATERIAL_ASSEMBLED:
        material = _material(state, event)
        state.materials[material.token_id] = replace(
            material,
            status=MaterialStatus.ASSEMBLED,
            assembled_into=int(payload["assembled_into"]),
        )

    elif et == MATERIAL_APPROVED:
        material = _material(state, event)
        operator = payload.get("operator")
        if operator:
            state.token_approvals[material.token_id] = operator
        else:
            state.token_approvals.pop(material.token_id, None)

    elif et == MATERIAL_OPERATOR_SET:
        owner = payload["owner"]
        current = state.operators.get(owner, frozenset())
        if payload.get("approved"):
            state.operators[owner] = current | {payload["operator"]}
        else:
            state.operators[owner] = current - {payload["operator"]}

    elif et == LISTING_CREATED:
        key = (payload["asset_ref"], int(payload["token_id"]))
        state.listings[key] = Listing(
            asset_ref=key[0],
            token_id=key[1],
            seller=payload["seller"],
            price=int(payload["price"]),
        )

    elif et in (LISTING_CANCELLED, LISTING_SOLD):
        key = (payload["asset_ref"], int(payload["token_id"]))
        listing = state.listings.get(key)
        if listing is None:
            raise ValueError(f"{et} at position {event.position} references unknown listing {key}")
        state.listings[key] = replace(listing, active=False)
        if et == LISTING_SOLD:
            seller = payload["seller"]
            state.proceeds[seller] = state.proceeds.get(seller, 0) + int(payload["price"])

    if event.position:
        state.position = event.position


def fold_events(events: Iterable[LedgerEvent], state: LedgerState | None = None) -> LedgerState:
    """
    Compute world state by folding events in ledger order.

    Args:
        events: Events in ascending position order
        state: Optional starting state (modified in place)

    Returns:
        The folded state
    """
    state = state if state is not None else LedgerState()
    for event in events:
        apply_event(state, event)
    return state
