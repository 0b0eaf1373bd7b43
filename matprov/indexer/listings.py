"""
Listings view: active marketplace listings derived from listing events.

The fold only knows what the marketplace said (created / cancelled / sold).
Whether a listed asset has since been assembled is a material fact, so it is
joined in at query time against current ledger state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..ledger.events import LISTING_CANCELLED, LISTING_CREATED, LISTING_SOLD, LedgerEvent
from ..ledger.state import LedgerState
from ..models import Listing, MaterialStatus

# Resolves a metadata reference to its display metadata (None if unavailable)
MetadataResolver = Callable[[str], "dict[str, Any] | None"]

# Filter field -> metadata keys that may carry it
_METADATA_FIELDS = {
    "name": ("name",),
    "supplier": ("supplierName", "supplier_name", "supplier"),
    "batch": ("batchNumber", "batch_number", "batch"),
    "description": ("description",),
}


@dataclass
class ListingsView:
    """Active listings keyed by (asset_ref, token_id)."""

    active: dict[tuple[str, int], Listing] = field(default_factory=dict)

    def copy(self) -> ListingsView:
        return ListingsView(active=dict(self.active))

    def apply(self, event: LedgerEvent) -> None:
        et = event.event_type
        if et not in (LISTING_CREATED, LISTING_CANCELLED, LISTING_SOLD):
            return
        payload = event.payload
        key = (payload["asset_ref"], int(payload["token_id"]))
        if et == LISTING_CREATED:
            self.active[key] = Listing(
                asset_ref=key[0],
                token_id=key[1],
                seller=payload["seller"],
                price=int(payload["price"]),
            )
        else:
            self.active.pop(key, None)

    def to_dict(self) -> dict[str, Any]:
        """Canonical JSON-compatible form."""
        return {
            "active": [self.active[key].to_dict() for key in sorted(self.active)],
        }


def fold_listings(events: Iterable[LedgerEvent], view: ListingsView | None = None) -> ListingsView:
    """Fold events into a new listings view (the input view is not modified)."""
    result = view.copy() if view is not None else ListingsView()
    for event in events:
        result.apply(event)
    return result


@dataclass(frozen=True)
class ListingFilter:
    """
    Case-insensitive substring filter, AND-combined across fields.

    Empty fields match everything.
    """

    name: str = ""
    supplier: str = ""
    batch: str = ""
    description: str = ""
    status: str = ""

    def is_empty(self) -> bool:
        return not any((self.name, self.supplier, self.batch, self.description, self.status))

    def matches(self, fields: dict[str, str]) -> bool:
        for field_name in ("name", "supplier", "batch", "description", "status"):
            needle = getattr(self, field_name).strip().lower()
            if needle and needle not in fields.get(field_name, "").lower():
                return False
        return True


@dataclass(frozen=True)
class ActiveListing:
    """A listing joined with current material state and display metadata."""

    asset_ref: str
    token_id: int
    seller: str
    price: int
    status: MaterialStatus
    metadata_ref: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_ref": self.asset_ref,
            "token_id": self.token_id,
            "seller": self.seller,
            "price": self.price,
            "status": self.status.label,
            "metadata_ref": self.metadata_ref,
            "metadata": self.metadata,
        }


def _display_fields(metadata: dict[str, Any], status: MaterialStatus) -> dict[str, str]:
    fields = {"status": status.label}
    for field_name, keys in _METADATA_FIELDS.items():
        for key in keys:
            value = metadata.get(key)
            if value is not None:
                fields[field_name] = str(value)
                break
    return fields


def select_listings(
    view: ListingsView,
    state: LedgerState,
    listing_filter: ListingFilter | None = None,
    resolve_metadata: MetadataResolver | None = None,
) -> list[ActiveListing]:
    """
    Active listings whose asset still exists and is not Assembled.

    Args:
        view: Folded listings view
        state: Current ledger state (material status join)
        listing_filter: Optional substring filter
        resolve_metadata: Optional metadata lookup for name/supplier/batch/description

    Returns:
        Matching listings ordered by (asset_ref, token_id)
    """
    listing_filter = listing_filter or ListingFilter()
    results: list[ActiveListing] = []
    for key in sorted(view.active):
        listing = view.active[key]
        material = state.materials.get(listing.token_id)
        if material is None or material.status == MaterialStatus.ASSEMBLED:
            continue

        metadata: dict[str, Any] = {}
        if resolve_metadata is not None and material.metadata_ref:
            metadata = resolve_metadata(material.metadata_ref) or {}

        if not listing_filter.matches(_display_fields(metadata, material.status)):
            continue

        results.append(
            ActiveListing(
                asset_ref=listing.asset_ref,
                token_id=listing.token_id,
                seller=listing.seller,
                price=listing.price,
                status=material.status,
                metadata_ref=material.metadata_ref,
                metadata=metadata,
            )
        )
    return results
