"""
Domain state machine for material provenance.

Each module pairs pure operations ``(state, inputs) -> (derived_id, events)``
with a thin component class that submits them through the ledger:

- roles: Soulbound identity-to-role binding
- certificates: Issuer-controlled supplier credentials
- materials: Material lifecycle, composition and transfer authorization
- marketplace: Fixed-price listings and atomic purchases
"""

from .certificates import CertificateRegistry
from .marketplace import Marketplace
from .materials import MaterialLedger
from .roles import RoleRegistry

__all__ = [
    "CertificateRegistry",
    "Marketplace",
    "MaterialLedger",
    "RoleRegistry",
]
