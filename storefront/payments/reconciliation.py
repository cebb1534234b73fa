"""
Réconciliation des paiements PayTabs.

Trois canaux peuvent observer le résultat d'un paiement, dans n'importe quel ordre:
- verify(): interrogation à la demande du client, lecture seule
- handle_webhook(): notification PayTabs signée (source de vérité)
- handle_return(): retour navigateur; les paramètres de redirection ne sont jamais crus,
  PayTabs est interrogé puis le résultat appliqué

Toutes les écritures passent par apply_result():
- Approved -> payment_status=paid, status=confirmed, paid_at, tran_ref
- Declined -> payment_status=failed, status=payment_failed, tran_ref
- Ambiguous -> aucune écriture, INVALID_CALLBACK

L'écriture est conditionnelle (compare-and-set): commande non payée, statut payable,
tran_ref nul ou identique. Un paiement confirmé n'est donc jamais écrasé par un
signal plus ancien, et rejouer le même résultat ne change rien.
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode
import logging
import re

from storefront.cart import service as cart_service
from storefront.config import RETURN_PAGE_URL, GatewayConfig
from storefront.errors import (
    GatewayError,
    InvalidCallback,
    InvalidGatewayResponse,
    OrderNotFound,
    SignatureError,
    StorefrontError,
)
from storefront.orders import repository as orders_repo
from storefront.orders.models import PAYABLE_STATUSES, OrderStatus, PaymentStatus
from .models import Ambiguous, Approved, Declined, GatewayResult, resolve_status
from .paytabs_client import PayTabsClient
from .signature import verify_body_signature, verify_fields_signature

logger = logging.getLogger(__name__)

TRAN_REF_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass
class ApplyOutcome:
    order_id: str
    action: str  # applied | already_paid | paid_late | stale
    status: Optional[str] = None
    payment_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(fields: Mapping[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = fields.get(name)
        if value not in (None, ""):
            return str(value).strip()
    return None


def _payload_status(fields: Mapping[str, Any]) -> Optional[str]:
    status = _first(fields, "respStatus", "resp_status", "response_status")
    if status:
        return status
    nested = fields.get("payment_result")
    if isinstance(nested, dict):
        return _first(nested, "response_status")
    return None


def _changes_for(result: GatewayResult) -> Dict[str, Any]:
    if isinstance(result, Approved):
        return {
            "payment_status": PaymentStatus.PAID.value,
            "status": OrderStatus.CONFIRMED.value,
            "paid_at": _now_iso(),
            "tran_ref": result.tran_ref,
        }
    return {
        "payment_status": PaymentStatus.FAILED.value,
        "status": OrderStatus.PAYMENT_FAILED.value,
        "tran_ref": result.tran_ref,
    }


class ReconciliationEngine:
    def __init__(self, client: Optional[PayTabsClient] = None, config: Optional[GatewayConfig] = None):
        self.client = client or PayTabsClient(config)
        self.config = config or self.client.config

    # --- lecture -----------------------------------------------------------

    async def verify(self, tran_ref: str, user: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Statut courant chez PayTabs. N'écrit jamais en base."""
        tran_ref = (tran_ref or "").strip()
        if not tran_ref:
            raise StorefrontError("Référence de transaction manquante", code="MISSING_TRAN_REF")
        if user is not None:
            self._check_owner(user, tran_ref)
        result = await self.client.query(tran_ref)
        if isinstance(result, Ambiguous):
            logger.warning("verify tran_ref=%s ambiguous: %s", tran_ref, result.reason)
            raise InvalidCallback()
        return {"ok": True, "status": result.status, "tran_ref": result.tran_ref, "cart_id": result.cart_id}

    def _check_owner(self, user: Dict[str, Any], tran_ref: str) -> None:
        if user.get("role") == "admin":
            return
        order = orders_repo.get_order_by_tran_ref(tran_ref, fields="id, user_id")
        if not order or str(order.get("user_id")) != str(user.get("id")):
            raise OrderNotFound()

    # --- écriture ----------------------------------------------------------

    def _find_order(self, order_id: Optional[str], tran_ref: Optional[str]) -> Dict[str, Any]:
        order = orders_repo.get_order(order_id) if order_id else None
        if not order and tran_ref:
            order = orders_repo.get_order_by_tran_ref(tran_ref)
        if not order:
            logger.warning("reconciliation: no order for order_id=%s tran_ref=%s", order_id, tran_ref)
            raise OrderNotFound()
        return order

    def apply_result(self, result: GatewayResult, order_id: Optional[str] = None) -> ApplyOutcome:
        """Applique un résultat résolu à la commande (par id, sinon par tran_ref)."""
        if isinstance(result, Ambiguous):
            logger.warning("reconciliation: ambiguous result tran_ref=%s reason=%s", result.tran_ref, result.reason)
            raise InvalidCallback()
        if not TRAN_REF_RE.match(result.tran_ref or ""):
            logger.warning("reconciliation: malformed tran_ref=%r", result.tran_ref)
            raise InvalidCallback("Référence de transaction invalide")

        order = self._find_order(order_id or result.cart_id, result.tran_ref)
        oid = str(order["id"])
        ref_filter = f"tran_ref.is.null,tran_ref.eq.{result.tran_ref}"

        rows = orders_repo.update_order_where(
            _changes_for(result),
            order_id=oid,
            status_in=PAYABLE_STATUSES,
            payment_status_neq=PaymentStatus.PAID.value,
            or_filter=ref_filter,
        )
        if rows:
            row = rows[0]
            logger.info("reconciliation applied order_id=%s tran_ref=%s -> %s/%s",
                        oid, result.tran_ref, row.get("status"), row.get("payment_status"))
            if isinstance(result, Approved):
                self._clear_cart(order)
            return ApplyOutcome(oid, "applied", row.get("status"), row.get("payment_status"))

        return self._after_conflict(result, oid, ref_filter)

    def _after_conflict(self, result: GatewayResult, oid: str, ref_filter: str) -> ApplyOutcome:
        current = orders_repo.get_order(oid)
        if not current:
            raise OrderNotFound()
        status, pay_status = current.get("status"), current.get("payment_status")

        if pay_status == PaymentStatus.PAID.value:
            logger.info("reconciliation: order_id=%s already paid, signal ignored", oid)
            return ApplyOutcome(oid, "already_paid", status, pay_status)

        same_ref = current.get("tran_ref") in (None, "", result.tran_ref)
        if isinstance(result, Approved) and same_ref:
            # Encaissement reçu après une action back-office (ex: annulation): on trace le paiement seul
            rows = orders_repo.update_order_where(
                {"payment_status": PaymentStatus.PAID.value, "paid_at": _now_iso(), "tran_ref": result.tran_ref},
                order_id=oid,
                payment_status_neq=PaymentStatus.PAID.value,
                or_filter=ref_filter,
            )
            logger.warning("reconciliation: payment approved on order_id=%s in status %s, refund may be needed", oid, status)
            if rows:
                return ApplyOutcome(oid, "paid_late", rows[0].get("status"), rows[0].get("payment_status"))
            return self._after_conflict(result, oid, ref_filter)

        if isinstance(result, Approved):
            logger.error("reconciliation: approved tran_ref=%s does not match order_id=%s tran_ref=%s, refund may be needed",
                         result.tran_ref, oid, current.get("tran_ref"))
        else:
            logger.warning("reconciliation: stale signal order_id=%s tran_ref=%s order=%s/%s ref=%s",
                           oid, result.tran_ref, status, pay_status, current.get("tran_ref"))
        return ApplyOutcome(oid, "stale", status, pay_status)

    def _clear_cart(self, order: Dict[str, Any]) -> None:
        user_id = order.get("user_id")
        if not user_id:
            return
        try:
            items = orders_repo.list_order_items(str(order["id"]))
            cart_service.clear_purchased_products(str(user_id), [str(i.get("product_id")) for i in items if i.get("product_id")])
        except Exception:
            logger.exception("reconciliation: cart cleanup failed order_id=%s", order.get("id"))

    # --- canaux --------------------------------------------------------------

    async def reconcile_by_query(self, tran_ref: Optional[str] = None, order_id: Optional[str] = None) -> ApplyOutcome:
        """Interroge PayTabs puis applique. Utilisé par le retour navigateur, le webhook sans statut et le back-office."""
        if not tran_ref and order_id:
            order = orders_repo.get_order(order_id, fields="id, tran_ref")
            if not order:
                raise OrderNotFound()
            tran_ref = order.get("tran_ref")
        if not tran_ref:
            raise InvalidCallback("Aucune transaction PayTabs pour cette commande")
        result = await self.client.query(tran_ref)
        return self.apply_result(result, order_id=order_id)

    def _check_signature(self, fields: Mapping[str, Any], raw_body: bytes, header_signature: Optional[str]) -> bool:
        key = self.config.server_key
        if fields.get("signature"):
            if not verify_fields_signature(fields, key):
                logger.warning("webhook rejected: invalid signature tran_ref=%s", _first(fields, "tranRef", "tran_ref"))
                raise SignatureError()
            return True
        if header_signature:
            if not verify_body_signature(raw_body, header_signature, key):
                logger.warning("webhook rejected: invalid Signature header")
                raise SignatureError()
            return True
        if not self.config.allow_unsigned_webhooks:
            logger.warning("webhook rejected: missing signature tran_ref=%s", _first(fields, "tranRef", "tran_ref"))
            raise SignatureError("Signature manquante")
        return False

    async def handle_webhook(self, fields: Mapping[str, Any], raw_body: bytes = b"", header_signature: Optional[str] = None) -> Dict[str, Any]:
        signed = self._check_signature(fields, raw_body, header_signature)
        tran_ref = _first(fields, "tranRef", "tran_ref")
        cart_id = _first(fields, "cartId", "cart_id")
        status = _payload_status(fields)

        if signed and status:
            result = resolve_status(status, tran_ref=tran_ref, cart_id=cart_id)
            outcome = self.apply_result(result, order_id=cart_id)
        else:
            if not tran_ref:
                raise InvalidCallback()
            logger.info("webhook tran_ref=%s: %s, querying PayTabs", tran_ref, "no status" if signed else "unsigned")
            outcome = await self.reconcile_by_query(tran_ref, order_id=cart_id if signed else None)
        return {"ok": True, **outcome.to_dict()}

    async def handle_return(self, params: Mapping[str, Any]) -> str:
        """Retourne l'URL de la page résultat du front: ?order_id=...&payment=paid|failed|pending."""
        tran_ref = _first(params, "tranRef", "tran_ref")
        order_id = None
        payment = "pending"
        if tran_ref:
            try:
                outcome = await self.reconcile_by_query(tran_ref)
                order_id = outcome.order_id
                if outcome.payment_status == PaymentStatus.PAID.value:
                    payment = "paid"
                elif outcome.payment_status == PaymentStatus.FAILED.value:
                    payment = "failed"
            except (GatewayError, InvalidGatewayResponse, InvalidCallback, OrderNotFound) as e:
                logger.warning("return tran_ref=%s unresolved: %s", tran_ref, e.code)
        query = {"payment": payment}
        if order_id:
            query = {"order_id": order_id, "payment": payment}
        sep = "&" if "?" in RETURN_PAGE_URL else "?"
        return f"{RETURN_PAGE_URL}{sep}{urlencode(query)}"


def get_engine() -> ReconciliationEngine:
    return ReconciliationEngine()
