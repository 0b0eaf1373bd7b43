"""matprov - Construction-material provenance over an append-only event ledger."""

__version__ = "0.1.0"
