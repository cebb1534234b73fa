"""
Cas d'usage 'checkout': transforme le panier du compte en commande figée.

- Une seule création en cours par utilisateur (ALREADY_CREATING sinon).
- Adresse: id explicite, sinon adresse par défaut, sinon la première.
- L'adresse, les prix et les libellés produits sont copiés dans la commande:
  une modification ultérieure du catalogue ou de l'adresse ne la change pas.
- orders + order_items réussissent ensemble; sinon la commande est supprimée.
- COD: lignes achetées retirées du panier tout de suite. En ligne: au paiement confirmé.
"""
from typing import Any, Dict, List, Optional
import logging

from storefront.addresses.repository import ADDRESS_SNAPSHOT_FIELDS, list_user_addresses
from storefront.cart import service as cart_service
from storefront.cart.models import CartItem, clamp_quantity
from storefront.errors import (
    AlreadyCreating,
    CartEmpty,
    InvalidPaymentMethod,
    LoginRequired,
    NoAddress,
    OrderCreateFailed,
)
from storefront.orders import repository as orders_repo
from storefront.orders.models import OrderStatus, PaymentMethod, PaymentStatus
from storefront.utils.guards import InFlightGuard, get_guard
from .pricing import PricingEngine, Totals, to_amount, unit_price

logger = logging.getLogger(__name__)

PROVIDER_BY_METHOD = {
    PaymentMethod.ONLINE.value: "paytabs",
    PaymentMethod.COD.value: "cod",
}


def resolve_address(addresses: List[Dict[str, Any]], address_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if address_id:
        for a in addresses:
            if str(a.get("id")) == str(address_id):
                return a
    for a in addresses:
        if a.get("is_default"):
            return a
    return addresses[0] if addresses else None


def address_snapshot(address: Dict[str, Any]) -> Dict[str, Any]:
    snap = {k: address.get(k) for k in ADDRESS_SNAPSHOT_FIELDS}
    snap["address_line_2"] = snap.get("address_line_2") or None
    return snap


def build_order_items(order_id: str, items: List[CartItem], role: Optional[str], pricing: PricingEngine) -> List[Dict[str, Any]]:
    rows = []
    for i in items:
        qty = clamp_quantity(i.quantity)
        rows.append({
            "order_id": order_id,
            "product_id": i.product_id,
            "product_name": i.product.get("name") or "",
            "unit_price": to_amount(unit_price(i.product, role)),
            "quantity": qty,
            "total_price": to_amount(pricing.line_total(i, role)),
        })
    return rows


class OrderFactory:
    def __init__(self, pricing: Optional[PricingEngine] = None, guard: Optional[InFlightGuard] = None):
        self.pricing = pricing or PricingEngine()
        self.guard = guard or get_guard()

    def quote(self, user: Dict[str, Any]) -> Totals:
        """Totaux du panier courant, sans écriture."""
        if not (user or {}).get("id"):
            raise LoginRequired()
        return self.pricing.price(cart_service.load_account_cart(user), user.get("role"))

    def create(self, user: Optional[Dict[str, Any]], address_id: Optional[str] = None, payment_method: str = "online") -> str:
        """
        Crée la commande et ses lignes, retourne order_id.
        Erreurs: LOGIN_REQUIRED, INVALID_PAYMENT_METHOD, ALREADY_CREATING, CART_EMPTY, NO_ADDRESS, ORDER_CREATE_FAILED.
        """
        uid = (user or {}).get("id")
        if not uid:
            raise LoginRequired()
        method = str(payment_method or "").strip().lower()
        if method not in PROVIDER_BY_METHOD:
            raise InvalidPaymentMethod()

        with self.guard.hold(f"order-create:{uid}", AlreadyCreating):
            return self._create(user, address_id, method)

    def _create(self, user: Dict[str, Any], address_id: Optional[str], method: str) -> str:
        uid = user["id"]
        token = user.get("token")
        role = user.get("role")

        # panne de lecture: erreur transitoire, jamais CART_EMPTY ni NO_ADDRESS
        try:
            items = cart_service.load_account_cart(user)
            addresses = list_user_addresses(uid, user_token=token) if items else []
        except Exception:
            logger.warning("order create: cart or addresses unreadable user_id=%s", uid)
            raise OrderCreateFailed()
        if not items:
            raise CartEmpty()

        address = resolve_address(addresses, address_id)
        if not address:
            raise NoAddress()

        totals = self.pricing.price(items, role)
        is_cod = method == PaymentMethod.COD.value
        payload = {
            "user_id": uid,
            "status": (OrderStatus.PENDING if is_cod else OrderStatus.AWAITING_PAYMENT).value,
            "payment_status": (PaymentStatus.PENDING if is_cod else PaymentStatus.UNPAID).value,
            "payment_method": method,
            "payment_provider": PROVIDER_BY_METHOD[method],
            "tran_ref": None,
            "paid_at": None,
            "shipping_address": address_snapshot(address),
            **totals.as_dict(),
        }

        try:
            order_id = str(orders_repo.insert_order(payload, user_token=token)["id"])
        except Exception:
            raise OrderCreateFailed()

        try:
            orders_repo.insert_order_items(build_order_items(order_id, items, role, self.pricing), user_token=token)
        except Exception:
            cleaned = orders_repo.delete_order(order_id, user_token=token)
            logger.error("order %s created without items, cleanup=%s", order_id, cleaned)
            raise OrderCreateFailed()

        if is_cod:
            cart_service.clear_purchased_products(uid, [i.product_id for i in items], user_token=token)

        logger.info("order created id=%s user_id=%s method=%s total=%s", order_id, uid, method, payload["total"])
        return order_id
