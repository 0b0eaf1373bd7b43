"""
Material lifecycle state machine.

Materials are minted by certified suppliers, move through
Available -> InTransit -> Delivered -> {Assembled | Available}, and end when
they are assembled into a new material. Assembly is one-way: an Assembled
material accepts no further transition and cannot be listed.

Ownership changes only through marketplace purchases; every check here
re-reads the current owner from ledger state at call time.
"""

from __future__ import annotations

from typing import Any, Iterable

from ..errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from ..ledger.events import (
    MATERIAL_APPROVED,
    MATERIAL_ASSEMBLED,
    MATERIAL_MINTED,
    MATERIAL_OPERATOR_SET,
    MATERIAL_STATUS_CHANGED,
    MATERIAL_TRANSFERRED,
    LedgerEvent,
    create_event,
    material_key,
)
from ..ledger.state import LedgerState
from ..ledger.store import EventLedger, Receipt
from ..models import (
    TRANSITIONS,
    ZERO_ADDRESS,
    Material,
    MaterialStatus,
    Role,
    normalize_identity,
)
from .certificates import is_certificate_valid

# Default material lifetime when mint() gets no explicit expiration
SIX_MONTHS = 180 * 24 * 60 * 60


def get_material(state: LedgerState, token_id: int) -> Material:
    material = state.materials.get(int(token_id))
    if material is None:
        raise NotFoundError("UnknownMaterial", f"material #{token_id} does not exist")
    return material


def _require_owner(material: Material, caller: str) -> None:
    if material.owner != caller:
        raise AuthorizationError("NotOwner", f"{caller} does not own material #{material.token_id}")


def _parse_components(composed_of: Iterable[int] | None) -> list[int]:
    components: list[int] = []
    for raw in composed_of or ():
        try:
            token_id = int(raw)
        except (TypeError, ValueError):
            raise ValidationError("MalformedReference", f"malformed material id: {raw!r}") from None
        if token_id in components:
            raise ValidationError("DuplicateComponent", f"material #{token_id} listed twice")
        components.append(token_id)
    return components


def mint_material(
    state: LedgerState,
    now: int,
    caller: str,
    metadata_ref: str,
    expires_at: int | None = None,
    composed_of: Iterable[int] | None = None,
    *,
    default_lifetime: int = SIX_MONTHS,
) -> tuple[int, list[LedgerEvent]]:
    """
    Mint a new material owned by ``caller``; returns its token id.

    Components listed in ``composed_of`` are forced to Assembled whatever
    their current status, and recorded on the new material for provenance.
    """
    caller = normalize_identity(caller)

    binding = state.roles.get(caller)
    if binding is None or binding.role != Role.SUPPLIER:
        raise AuthorizationError("NotSupplier", f"only suppliers can mint ({caller})")

    if not is_certificate_valid(state, caller, now):
        raise ValidationError("NoValidCertificate", f"{caller} has no valid certificate")

    if expires_at is None:
        expires_at = now + default_lifetime
    else:
        expires_at = int(expires_at)
        if expires_at <= now:
            raise ValidationError("ExpirationInPast", f"expiration {expires_at} is not after {now}")

    components = _parse_components(composed_of)
    consumed: list[Material] = []
    for component_id in components:
        component = get_material(state, component_id)
        _require_owner(component, caller)
        if component.status == MaterialStatus.ASSEMBLED:
            raise StateConflictError("AlreadyAssembled", f"material #{component_id} is already assembled")
        consumed.append(component)

    token_id = state.material_count + 1
    events = [
        create_event(
            MATERIAL_MINTED,
            material_key(token_id),
            caller,
            payload={
                "token_id": token_id,
                "owner": caller,
                "expires_at": expires_at,
                "metadata_ref": metadata_ref or "",
                "composed_of": components,
            },
        ),
        create_event(
            MATERIAL_TRANSFERRED,
            material_key(token_id),
            caller,
            payload={"token_id": token_id, "from": ZERO_ADDRESS, "to": caller},
        ),
    ]
    for component in consumed:
        events.append(
            create_event(
                MATERIAL_ASSEMBLED,
                material_key(component.token_id),
                caller,
                payload={
                    "token_id": component.token_id,
                    "previous": int(component.status),
                    "assembled_into": token_id,
                },
            )
        )
    return token_id, events


def update_material_status(
    state: LedgerState,
    caller: str,
    token_id: int,
    new_status: MaterialStatus | int | str,
) -> tuple[int, list[LedgerEvent]]:
    """Move a material along one lifecycle edge; returns the token id."""
    caller = normalize_identity(caller)
    target = MaterialStatus.parse(new_status)
    material = get_material(state, token_id)
    _require_owner(material, caller)

    if material.status == MaterialStatus.ASSEMBLED:
        raise StateConflictError("Terminal", f"material #{material.token_id} is assembled; no further transitions")
    if target not in TRANSITIONS[material.status]:
        raise StateConflictError(
            "InvalidTransition",
            f"{material.status.label} -> {target.label} is not an allowed transition",
        )

    event = create_event(
        MATERIAL_STATUS_CHANGED,
        material_key(material.token_id),
        caller,
        payload={
            "token_id": material.token_id,
            "previous": int(material.status),
            "status": int(target),
        },
    )
    return material.token_id, [event]


def approve_operator(
    state: LedgerState,
    caller: str,
    token_id: int,
    operator: str | None,
) -> tuple[int, list[LedgerEvent]]:
    """Authorize ``operator`` to transfer one material (None clears the approval)."""
    caller = normalize_identity(caller)
    material = get_material(state, token_id)
    _require_owner(material, caller)

    if operator is not None:
        operator = normalize_identity(operator)
        if operator == caller:
            raise ValidationError("SelfApproval", "owner cannot approve itself")

    event = create_event(
        MATERIAL_APPROVED,
        material_key(material.token_id),
        caller,
        payload={"token_id": material.token_id, "owner": caller, "operator": operator},
    )
    return material.token_id, [event]


def set_operator_approval(
    state: LedgerState,
    caller: str,
    operator: str,
    approved: bool,
) -> tuple[str, list[LedgerEvent]]:
    """Authorize (or withdraw) ``operator`` for all of the caller's materials."""
    caller = normalize_identity(caller)
    operator = normalize_identity(operator)
    if operator == caller:
        raise ValidationError("SelfApproval", "owner cannot approve itself")

    event = create_event(
        MATERIAL_OPERATOR_SET,
        f"operator:{caller}",
        caller,
        payload={"owner": caller, "operator": operator, "approved": bool(approved)},
    )
    return operator, [event]


def provenance_tree(state: LedgerState, token_id: int) -> dict[str, Any]:
    """Nested composition tree of a material (components, recursively)."""
    material = get_material(state, token_id)
    return {
        "token_id": material.token_id,
        "status": material.status.label,
        "owner": material.owner,
        "metadata_ref": material.metadata_ref,
        "components": [provenance_tree(state, c) for c in material.composed_of],
    }


class MaterialLedger:
    """Per-unit lifecycle gated by role and certificate validity."""

    def __init__(self, ledger: EventLedger, *, default_lifetime: int = SIX_MONTHS):
        self.ledger = ledger
        self.default_lifetime = int(default_lifetime)

    def mint(
        self,
        caller: str,
        metadata_ref: str,
        expires_at: int | None = None,
        composed_of: Iterable[int] | None = None,
        *,
        timeout: float | None = None,
    ) -> Receipt:
        components = list(composed_of or ())
        return self.ledger.transact(
            caller,
            "material.mint",
            lambda state, now: mint_material(
                state,
                now,
                caller,
                metadata_ref,
                expires_at,
                components,
                default_lifetime=self.default_lifetime,
            ),
            timeout=timeout,
        )

    def update_status(
        self,
        caller: str,
        token_id: int,
        new_status: MaterialStatus | int | str,
        *,
        timeout: float | None = None,
    ) -> Receipt:
        return self.ledger.transact(
            caller,
            "material.update_status",
            lambda state, now: update_material_status(state, caller, token_id, new_status),
            timeout=timeout,
        )

    def approve(self, caller: str, token_id: int, operator: str | None, *, timeout: float | None = None) -> Receipt:
        return self.ledger.transact(
            caller,
            "material.approve",
            lambda state, now: approve_operator(state, caller, token_id, operator),
            timeout=timeout,
        )

    def set_operator(
        self,
        caller: str,
        operator: str,
        approved: bool = True,
        *,
        timeout: float | None = None,
    ) -> Receipt:
        return self.ledger.transact(
            caller,
            "material.set_operator",
            lambda state, now: set_operator_approval(state, caller, operator, approved),
            timeout=timeout,
        )

    def get_material(self, token_id: int) -> Material:
        return get_material(self.ledger.state(), token_id)

    def get_expiration(self, token_id: int) -> int:
        return get_material(self.ledger.state(), token_id).expires_at

    def owner_of(self, token_id: int) -> str:
        return get_material(self.ledger.state(), token_id).owner

    def is_authorized(self, token_id: int, operator: str) -> bool:
        return self.ledger.state().is_authorized(int(token_id), normalize_identity(operator))

    def components_of(self, token_id: int) -> dict[str, Any]:
        return provenance_tree(self.ledger.state(), token_id)
