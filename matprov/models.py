"""Data models for roles, certificates, materials and listings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from .errors import ValidationError


# Mint source for material transfers; never a real owner
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# The only asset collection the marketplace trades
MATERIAL_ASSET = "material"


class Role(IntEnum):
    """Identity roles. Ordinals are the wire encoding and must stay stable."""

    BUYER = 0
    SUPPLIER = 1

    @property
    def label(self) -> str:
        return self.name.capitalize()


class MaterialStatus(IntEnum):
    """Material lifecycle states.

    Ordinals are the wire encoding persisted in ledger history:
    0 Available, 1 InTransit, 2 Delivered, 3 Assembled.
    """

    AVAILABLE = 0
    IN_TRANSIT = 1
    DELIVERED = 2
    ASSEMBLED = 3

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def parse(cls, value: int | str | MaterialStatus) -> MaterialStatus:
        """Accept an ordinal, a label ("InTransit") or an enum name ("in_transit")."""
        if isinstance(value, MaterialStatus):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError("UnknownStatus", f"unknown status ordinal: {value}") from None
        text = str(value).strip()
        if text.isdigit():
            return cls.parse(int(text))
        key = text.replace("-", "").replace("_", "").replace(" ", "").lower()
        for status, label in _STATUS_LABELS.items():
            if label.lower() == key:
                return status
        raise ValidationError("UnknownStatus", f"unknown status: {value!r}")


_STATUS_LABELS = {
    MaterialStatus.AVAILABLE: "Available",
    MaterialStatus.IN_TRANSIT: "InTransit",
    MaterialStatus.DELIVERED: "Delivered",
    MaterialStatus.ASSEMBLED: "Assembled",
}

# Allowed lifecycle edges; Assembled has no outgoing edge
TRANSITIONS: dict[MaterialStatus, frozenset[MaterialStatus]] = {
    MaterialStatus.AVAILABLE: frozenset({MaterialStatus.IN_TRANSIT}),
    MaterialStatus.IN_TRANSIT: frozenset({MaterialStatus.DELIVERED}),
    MaterialStatus.DELIVERED: frozenset({MaterialStatus.ASSEMBLED, MaterialStatus.AVAILABLE}),
    MaterialStatus.ASSEMBLED: frozenset(),
}


def normalize_identity(identity: str) -> str:
    """Canonical form of an address-like identity (trimmed, lower-case)."""
    if not isinstance(identity, str) or not identity.strip():
        raise ValidationError("MalformedIdentity", f"malformed identity: {identity!r}")
    return identity.strip().lower()


@dataclass(frozen=True)
class RoleBinding:
    """Soulbound identity-to-role association."""

    identity: str
    role: Role
    token_id: int

    def to_dict(self) -> dict[str, Any]:
        return {"identity": self.identity, "role": int(self.role), "token_id": self.token_id}


@dataclass(frozen=True)
class Certificate:
    """Supplier credential issued by the registry controller."""

    certificate_id: int
    holder: str
    expires_at: int  # 0 = never expires
    metadata_ref: str
    revoked: bool = False

    def is_valid(self, now: int) -> bool:
        return not self.revoked and (self.expires_at == 0 or now < self.expires_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "certificate_id": self.certificate_id,
            "holder": self.holder,
            "expires_at": self.expires_at,
            "metadata_ref": self.metadata_ref,
            "revoked": self.revoked,
        }


@dataclass(frozen=True)
class Material:
    """A single unit of construction material."""

    token_id: int
    owner: str
    status: MaterialStatus
    expires_at: int
    metadata_ref: str
    composed_of: tuple[int, ...] = field(default_factory=tuple)
    assembled_into: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_id": self.token_id,
            "owner": self.owner,
            "status": int(self.status),
            "status_label": self.status.label,
            "expires_at": self.expires_at,
            "metadata_ref": self.metadata_ref,
            "composed_of": list(self.composed_of),
            "assembled_into": self.assembled_into,
        }


@dataclass(frozen=True)
class Listing:
    """A standing offer to sell one asset unit at a fixed price."""

    asset_ref: str
    token_id: int
    seller: str
    price: int
    active: bool = True

    @property
    def key(self) -> tuple[str, int]:
        return (self.asset_ref, self.token_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_ref": self.asset_ref,
            "token_id": self.token_id,
            "seller": self.seller,
            "price": self.price,
            "active": self.active,
        }
