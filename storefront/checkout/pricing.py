"""
Moteur de prix pur (pas de PayTabs, pas de DB).

Arithmétique Decimal, 3 décimales (OMR), arrondi « half away from zero » appliqué
à chaque étape: sous-total, frais de port, TVA (sur le sous-total arrondi) puis
total (somme des termes arrondis). L'ordre compte pour que les montants
affichés, stockés et envoyés à PayTabs soient reproductibles.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional

from storefront.cart.models import CartItem, clamp_quantity
from storefront.config import PricingConfig

CURRENCY_PLACES = Decimal("0.001")
ZERO = Decimal("0")
WHOLESALE_ROLES = ("wholesale", "wholesaler")


def round3(value: Any) -> Decimal:
    return to_decimal(value).quantize(CURRENCY_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """Convertit un montant (str|int|float|Decimal|None) en Decimal; 0 si absent ou invalide."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not d.is_finite():
        return ZERO
    return d


def to_amount(value: Any) -> float:
    """Montant JSON / PostgREST (float à 3 décimales)."""
    return float(round3(value))


def unit_price(product: Optional[Dict[str, Any]], role: Optional[str]) -> Decimal:
    """
    Prix unitaire selon le rôle:
    - grossiste avec wholesale_price renseigné -> wholesale_price
    - sinon retail_price
    - prix manquant -> 0 (jamais d'exception)
    """
    product = product or {}
    wholesale = product.get("wholesale_price")
    if str(role or "").lower() in WHOLESALE_ROLES and wholesale is not None and wholesale != "":
        return to_decimal(wholesale)
    return to_decimal(product.get("retail_price"))


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    shipping_fee: Decimal
    tax: Decimal
    total: Decimal

    def as_dict(self) -> Dict[str, float]:
        return {
            "subtotal": to_amount(self.subtotal),
            "shipping_fee": to_amount(self.shipping_fee),
            "tax": to_amount(self.tax),
            "total": to_amount(self.total),
        }


class PricingEngine:
    def __init__(self, config: Optional[PricingConfig] = None):
        self.config = config or PricingConfig.from_env()

    def line_total(self, item: CartItem, role: Optional[str]) -> Decimal:
        return round3(unit_price(item.product, role) * clamp_quantity(item.quantity))

    def price(self, items: Iterable[CartItem], role: Optional[str]) -> Totals:
        items = list(items)
        raw_subtotal = sum(
            (unit_price(i.product, role) * clamp_quantity(i.quantity) for i in items),
            ZERO,
        )
        subtotal = round3(raw_subtotal)
        shipping = round3(self.config.shipping_fee) if items else round3(ZERO)
        tax = round3(subtotal * to_decimal(self.config.tax_rate))
        total = round3(subtotal + shipping + tax)
        return Totals(subtotal=subtotal, shipping_fee=shipping, tax=tax, total=total)
