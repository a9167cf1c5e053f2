"""Regulatory thresholds deciding when a sale needs an electronic document.

The amounts change with ARCA resolutions, so they are configuration inputs
(see ``config.load_policy``) and no threshold applies unless one is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from facturador.utils.validators import parse_decimal

ELECTRONIC_PAYMENT_METHODS = frozenset(
    {"transferencia", "tarjeta_debito", "tarjeta_credito", "qr"}
)


@dataclass(frozen=True)
class ElectronicInvoicePolicy:
    electronic_threshold: Decimal | None = None
    customer_details_threshold: Decimal | None = None
    electronic_payment_methods: frozenset[str] = ELECTRONIC_PAYMENT_METHODS

    def requires_electronic(self, amount: object, payment_method: str | None = None) -> bool:
        """True when the payment method or the amount forces an electronic document."""
        if payment_method and payment_method.lower() in self.electronic_payment_methods:
            return True
        if self.electronic_threshold is None:
            return False
        return parse_decimal(amount) >= self.electronic_threshold

    def requires_customer_details(self, amount: object) -> bool:
        """True when the recipient must be identified for this amount."""
        if self.customer_details_threshold is None:
            return False
        return parse_decimal(amount) >= self.customer_details_threshold
