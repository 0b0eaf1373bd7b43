"""
Fixed-price marketplace over (asset_ref, token_id) pairs.

A listing is a standing offer by the current owner, who must first have
authorized the marketplace to transfer the asset. A purchase swaps ownership
for payment atomically: the sale, the payment routed to the seller and the
transfer to the buyer are one ledger transaction.

Overpayment is rejected rather than refunded (see DESIGN.md).
"""

from __future__ import annotations

from ..errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from ..ledger.events import (
    LISTING_CANCELLED,
    LISTING_CREATED,
    LISTING_SOLD,
    MATERIAL_TRANSFERRED,
    LedgerEvent,
    create_event,
    listing_key,
    material_key,
)
from ..ledger.state import LedgerState
from ..ledger.store import EventLedger, Receipt
from ..models import MATERIAL_ASSET, Listing, MaterialStatus, normalize_identity
from .materials import get_material

# Default identity the marketplace acts as when transferring assets
DEFAULT_OPERATOR = "marketplace"

ListingKey = tuple[str, int]


def _asset_key(asset_ref: str, token_id: int | str) -> ListingKey:
    if asset_ref != MATERIAL_ASSET:
        raise ValidationError("UnknownAsset", f"unknown asset reference: {asset_ref!r}")
    try:
        return (asset_ref, int(token_id))
    except (TypeError, ValueError):
        raise ValidationError("MalformedReference", f"malformed token id: {token_id!r}") from None


def _amount(value: int, reason: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(reason, f"amount must be an integer number of units: {value!r}")
    return value


def list_asset(
    state: LedgerState,
    operator: str,
    seller: str,
    asset_ref: str,
    token_id: int,
    price: int,
) -> tuple[ListingKey, list[LedgerEvent]]:
    """Create an active listing; returns its (asset_ref, token_id) key."""
    seller = normalize_identity(seller)
    key = _asset_key(asset_ref, token_id)
    material = get_material(state, key[1])

    if material.owner != seller:
        raise AuthorizationError("NotOwner", f"{seller} does not own {key[0]} #{key[1]}")
    if not state.is_authorized(key[1], operator):
        raise AuthorizationError("NotApproved", f"marketplace is not approved to transfer {key[0]} #{key[1]}")

    price = _amount(price, "InvalidPrice")
    if price <= 0:
        raise ValidationError("InvalidPrice", f"price must be positive: {price}")

    if material.status == MaterialStatus.ASSEMBLED:
        raise StateConflictError("Terminal", f"{key[0]} #{key[1]} is assembled and cannot be listed")

    existing = state.listings.get(key)
    if existing is not None and existing.active:
        raise StateConflictError("AlreadyListed", f"{key[0]} #{key[1]} is already listed")

    event = create_event(
        LISTING_CREATED,
        listing_key(*key),
        seller,
        payload={"asset_ref": key[0], "token_id": key[1], "seller": seller, "price": price},
    )
    return key, [event]


def cancel_listing(
    state: LedgerState,
    caller: str,
    asset_ref: str,
    token_id: int,
) -> tuple[ListingKey, list[LedgerEvent]]:
    """Deactivate the caller's listing."""
    caller = normalize_identity(caller)
    key = _asset_key(asset_ref, token_id)

    listing = state.listings.get(key)
    if listing is None:
        raise NotFoundError("NoListing", f"{key[0]} #{key[1]} was never listed")
    if listing.seller != caller:
        raise AuthorizationError("NotSeller", f"{caller} is not the seller of {key[0]} #{key[1]}")
    if not listing.active:
        raise StateConflictError("AlreadyInactive", f"listing for {key[0]} #{key[1]} is already inactive")

    event = create_event(
        LISTING_CANCELLED,
        listing_key(*key),
        caller,
        payload={"asset_ref": key[0], "token_id": key[1], "seller": caller},
    )
    return key, [event]


def buy_listing(
    state: LedgerState,
    operator: str,
    buyer: str,
    asset_ref: str,
    token_id: int,
    payment: int,
) -> tuple[ListingKey, list[LedgerEvent]]:
    """
    Buy an active listing.

    The losing side of a race on the same listing sees ``active == False``
    here (the ledger ordered the winner first) and fails with NotListed.
    """
    buyer = normalize_identity(buyer)
    key = _asset_key(asset_ref, token_id)

    listing = state.listings.get(key)
    if listing is None or not listing.active:
        raise NotFoundError("NotListed", f"{key[0]} #{key[1]} is not listed")

    payment = _amount(payment, "InvalidPayment")
    if payment < listing.price:
        raise ValidationError("InsufficientFunds", f"payment {payment} is below price {listing.price}")
    if payment > listing.price:
        raise ValidationError("Overpayment", f"payment {payment} exceeds price {listing.price}; exact payment required")

    material = get_material(state, key[1])
    if material.owner != listing.seller:
        raise AuthorizationError("SellerNotOwner", f"seller no longer owns {key[0]} #{key[1]}")
    if not state.is_authorized(key[1], operator):
        raise AuthorizationError("NotApproved", f"marketplace approval for {key[0]} #{key[1]} was withdrawn")
    if material.status == MaterialStatus.ASSEMBLED:
        raise StateConflictError("Terminal", f"{key[0]} #{key[1]} was assembled after listing")

    events = [
        create_event(
            LISTING_SOLD,
            listing_key(*key),
            buyer,
            payload={
                "asset_ref": key[0],
                "token_id": key[1],
                "seller": listing.seller,
                "buyer": buyer,
                "price": listing.price,
            },
        ),
        create_event(
            MATERIAL_TRANSFERRED,
            material_key(key[1]),
            buyer,
            payload={"token_id": key[1], "from": listing.seller, "to": buyer},
        ),
    ]
    return key, events


class Marketplace:
    """Listing, cancellation and purchase of material units."""

    def __init__(self, ledger: EventLedger, operator: str = DEFAULT_OPERATOR):
        """
        Args:
            ledger: Ledger collaborator
            operator: Identity owners approve so the marketplace can transfer on sale
        """
        self.ledger = ledger
        self.operator = normalize_identity(operator)

    def list(self, seller: str, asset_ref: str, token_id: int, price: int, *, timeout: float | None = None) -> Receipt:
        return self.ledger.transact(
            seller,
            "market.list",
            lambda state, now: list_asset(state, self.operator, seller, asset_ref, token_id, price),
            timeout=timeout,
        )

    def cancel(self, caller: str, asset_ref: str, token_id: int, *, timeout: float | None = None) -> Receipt:
        return self.ledger.transact(
            caller,
            "market.cancel",
            lambda state, now: cancel_listing(state, caller, asset_ref, token_id),
            timeout=timeout,
        )

    def buy(self, buyer: str, asset_ref: str, token_id: int, payment: int, *, timeout: float | None = None) -> Receipt:
        return self.ledger.transact(
            buyer,
            "market.buy",
            lambda state, now: buy_listing(state, self.operator, buyer, asset_ref, token_id, payment),
            timeout=timeout,
        )

    def get_listing(self, asset_ref: str, token_id: int) -> Listing:
        key = _asset_key(asset_ref, token_id)
        listing = self.ledger.state().listings.get(key)
        if listing is None:
            raise NotFoundError("NoListing", f"{key[0]} #{key[1]} was never listed")
        return listing

    def proceeds_of(self, identity: str) -> int:
        return self.ledger.state().proceeds.get(normalize_identity(identity), 0)
