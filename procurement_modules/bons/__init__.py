"""
Bons Module (``procurement_modules.bons``).

Pricing vouchers created on delivery; the auditor prices each product
before it can be sold.
"""

from procurement_modules.bons.models import Bon, BonProduct, BonStatus
from procurement_modules.bons.workflows import BON_WORKFLOW

__all__ = ["Bon", "BonProduct", "BonStatus", "BON_WORKFLOW"]
