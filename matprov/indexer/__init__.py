"""
Read views reconstructed by replaying the ledger event stream.
"""

from .history import Confidence, HistoryEntry, HistoryView, reconcile_history
from .indexer import IndexSnapshot, IndexStatus, LedgerIndexer
from .listings import ActiveListing, ListingFilter, ListingsView, select_listings
from .ownership import OwnershipView, fold_ownership

__all__ = [
    "ActiveListing",
    "Confidence",
    "HistoryEntry",
    "HistoryView",
    "IndexSnapshot",
    "IndexStatus",
    "LedgerIndexer",
    "ListingFilter",
    "ListingsView",
    "OwnershipView",
    "fold_ownership",
    "reconcile_history",
    "select_listings",
]
