"""
Soulbound role registry.

An identity is bound to exactly one role, once. There is no update or
transfer operation: non-transferability is structural, not a guard.
"""

from __future__ import annotations

from ..errors import NotFoundError, StateConflictError, ValidationError
from ..ledger.events import ROLE_REGISTERED, LedgerEvent, create_event, role_key
from ..ledger.state import LedgerState
from ..ledger.store import EventLedger, Receipt
from ..models import Role, RoleBinding, normalize_identity


def parse_role(value: Role | int | str) -> Role:
    """Accept a Role, its ordinal, or its name ("buyer" / "supplier")."""
    if isinstance(value, Role):
        return value
    if isinstance(value, int):
        try:
            return Role(value)
        except ValueError:
            raise ValidationError("UnknownRole", f"unknown role ordinal: {value}") from None
    text = str(value).strip()
    if text.isdigit():
        return parse_role(int(text))
    try:
        return Role[text.upper()]
    except KeyError:
        raise ValidationError("UnknownRole", f"unknown role: {value!r}") from None


def register_role(state: LedgerState, identity: str, role: Role | int | str) -> tuple[int, list[LedgerEvent]]:
    """Bind ``identity`` to ``role``; returns the new role token id."""
    identity = normalize_identity(identity)
    role = parse_role(role)

    if identity in state.roles:
        existing = state.roles[identity]
        raise StateConflictError(
            "AlreadyRegistered",
            f"{identity} is already registered as {existing.role.label}",
        )

    token_id = state.role_count + 1
    event = create_event(
        ROLE_REGISTERED,
        role_key(identity),
        identity,
        payload={"identity": identity, "role": int(role), "token_id": token_id},
    )
    return token_id, [event]


def lookup_role(state: LedgerState, identity: str) -> RoleBinding:
    identity = normalize_identity(identity)
    binding = state.roles.get(identity)
    if binding is None:
        raise NotFoundError("NotRegistered", f"{identity} has no role")
    return binding


class RoleRegistry:
    """Binds identities to roles through the ledger."""

    def __init__(self, ledger: EventLedger):
        self.ledger = ledger

    def register(self, identity: str, role: Role | int | str, *, timeout: float | None = None) -> Receipt:
        return self.ledger.transact(
            identity,
            "role.register",
            lambda state, now: register_role(state, identity, role),
            timeout=timeout,
        )

    def get_role(self, identity: str) -> Role:
        return lookup_role(self.ledger.state(), identity).role

    def get_binding(self, identity: str) -> RoleBinding:
        return lookup_role(self.ledger.state(), identity)

    def has_role(self, identity: str) -> bool:
        try:
            self.get_role(identity)
        except NotFoundError:
            return False
        return True
