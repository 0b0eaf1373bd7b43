"""
Immutable event types for the provenance ledger.

Events are the atomic unit of the ledger - each line in ledger.jsonl is one event.
Current state is computed by folding events, never by mutating prior entries.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from typing import Any

# Identity events
ROLE_REGISTERED = "role.registered"

# Certificate events
CERTIFICATE_ISSUED = "certificate.issued"
CERTIFICATE_REVOKED = "certificate.revoked"

# Material events
MATERIAL_MINTED = "material.minted"
MATERIAL_TRANSFERRED = "material.transferred"
MATERIAL_STATUS_CHANGED = "material.status_changed"
MATERIAL_ASSEMBLED = "material.assembled"
MATERIAL_APPROVED = "material.approved"
MATERIAL_OPERATOR_SET = "material.operator_set"

# Storage-only write from legacy producers: changes state, emits no public event
MATERIAL_STATUS_WRITTEN = "material.status_written"

# Marketplace events
LISTING_CREATED = "listing.created"
LISTING_CANCELLED = "listing.cancelled"
LISTING_SOLD = "listing.sold"

# All valid event types
EVENT_TYPES = frozenset({
    ROLE_REGISTERED,
    CERTIFICATE_ISSUED,
    CERTIFICATE_REVOKED,
    MATERIAL_MINTED,
    MATERIAL_TRANSFERRED,
    MATERIAL_STATUS_CHANGED,
    MATERIAL_ASSEMBLED,
    MATERIAL_APPROVED,
    MATERIAL_OPERATOR_SET,
    MATERIAL_STATUS_WRITTEN,
    LISTING_CREATED,
    LISTING_CANCELLED,
    LISTING_SOLD,
})

STORAGE_ONLY_EVENTS = frozenset({MATERIAL_STATUS_WRITTEN})


def role_key(identity: str) -> str:
    return f"role:{identity}"


def certificate_key(holder: str) -> str:
    return f"certificate:{holder}"


def material_key(token_id: int) -> str:
    return f"material:{token_id}"


def listing_key(asset_ref: str, token_id: int) -> str:
    return f"listing:{asset_ref}:{token_id}"


def proceeds_key(identity: str) -> str:
    return f"proceeds:{identity}"


@dataclass(frozen=True)
class LedgerEvent:
    """
    Immutable event in the provenance ledger.

    Events are append-only - once written, they are never modified.
    ``position`` and ``batch`` are assigned by the ledger on append;
    drafts produced by domain operations leave them at 0.
    """

    event_type: str  # One of EVENT_TYPES
    subject: str  # Entity key, e.g. "material:7"
    actor: str  # Identity that submitted the transaction
    timestamp: int  # Ledger time (unix seconds)

    payload: dict[str, Any] = field(default_factory=dict)

    position: int = 0  # 1-based total order
    batch: int = 0  # Transaction sequence number

    def __post_init__(self) -> None:
        """Validate event structure."""
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Invalid event_type: {self.event_type}")

    @property
    def token_id(self) -> int | None:
        value = self.payload.get("token_id")
        return int(value) if value is not None else None

    def at(self, position: int, batch: int, *, timestamp: int | None = None) -> LedgerEvent:
        """Return a copy placed at a ledger position."""
        if timestamp is None:
            timestamp = self.timestamp
        return replace(self, position=position, batch=batch, timestamp=timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result: dict[str, Any] = {
            "position": self.position,
            "batch": self.batch,
            "event_type": self.event_type,
            "subject": self.subject,
            "actor": self.actor,
            "timestamp": self.timestamp,
        }
        if self.payload:
            result["payload"] = self.payload
        return result

    def to_json(self) -> str:
        """Serialize to JSON string (single line)."""
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)

    def digest(self) -> str:
        """sha256 of the canonical serialization."""
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerEvent:
        """Reconstruct from JSON dict."""
        return cls(
            event_type=data["event_type"],
            subject=data["subject"],
            actor=data["actor"],
            timestamp=int(data["timestamp"]),
            payload=data.get("payload", {}),
            position=int(data.get("position", 0)),
            batch=int(data.get("batch", 0)),
        )

    @classmethod
    def from_json(cls, line: str) -> LedgerEvent:
        """Parse from JSON string."""
        return cls.from_dict(json.loads(line))


# Payload field documentation for each event type
EVENT_PAYLOAD_FIELDS = {
    ROLE_REGISTERED: {
        "identity": "Registered identity",
        "role": "Role ordinal (0 Buyer, 1 Supplier)",
        "token_id": "Soulbound role token id",
    },
    CERTIFICATE_ISSUED: {
        "certificate_id": "Sequential certificate id",
        "holder": "Certified identity",
        "expires_at": "Expiry (unix seconds, 0 = never)",
        "metadata_ref": "Reference to certificate metadata",
    },
    CERTIFICATE_REVOKED: {
        "certificate_id": "Revoked certificate id",
        "holder": "Holder whose certificate was revoked",
    },
    MATERIAL_MINTED: {
        "token_id": "New material id",
        "owner": "Minting supplier",
        "expires_at": "Material expiration (unix seconds)",
        "metadata_ref": "Reference to display metadata",
        "composed_of": "Component material ids consumed by this one",
    },
    MATERIAL_TRANSFERRED: {
        "token_id": "Material id",
        "from": "Previous owner (zero address on mint)",
        "to": "New owner",
    },
    MATERIAL_STATUS_CHANGED: {
        "token_id": "Material id",
        "previous": "Status ordinal before the change",
        "status": "Status ordinal after the change",
    },
    MATERIAL_ASSEMBLED: {
        "token_id": "Component material id",
        "previous": "Status ordinal before assembly",
        "assembled_into": "Material id that consumed the component",
    },
    MATERIAL_APPROVED: {
        "token_id": "Material id",
        "owner": "Owner granting the approval",
        "operator": "Approved operator (null clears)",
    },
    MATERIAL_OPERATOR_SET: {
        "owner": "Owner granting or withdrawing authorization",
        "operator": "Operator for all of the owner's materials",
        "approved": "Whether the operator is authorized",
    },
    MATERIAL_STATUS_WRITTEN: {
        "token_id": "Material id",
        "status": "Status ordinal written to storage",
    },
    LISTING_CREATED: {
        "asset_ref": "Asset collection",
        "token_id": "Listed unit",
        "seller": "Listing owner",
        "price": "Fixed price (smallest currency unit)",
    },
    LISTING_CANCELLED: {
        "asset_ref": "Asset collection",
        "token_id": "Listed unit",
        "seller": "Listing owner",
    },
    LISTING_SOLD: {
        "asset_ref": "Asset collection",
        "token_id": "Sold unit",
        "seller": "Seller credited with the payment",
        "buyer": "New owner",
        "price": "Amount routed to the seller",
    },
}


def create_event(
    event_type: str,
    subject: str,
    actor: str,
    *,
    payload: dict[str, Any] | None = None,
    timestamp: int = 0,
) -> LedgerEvent:
    """
    Factory function for creating event drafts.

    The ledger stamps position, batch and (when left at 0) timestamp on append.
    """
    return LedgerEvent(
        event_type=event_type,
        subject=subject,
        actor=actor,
        timestamp=timestamp,
        payload=payload or {},
    )
