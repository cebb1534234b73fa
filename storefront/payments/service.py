"""
Cas d'usage 'payments': création de la transaction PayTabs pour une commande existante.

Seule la référence tran_ref est enregistrée ici, une seule fois par commande; le statut
de paiement n'est modifié que par la réconciliation (webhook, retour navigateur, back-office).
Une commande dont le paiement a été refusé ne reçoit pas de nouvelle transaction:
le panier n'étant vidé qu'au paiement confirmé, le client repasse commande.
"""
from typing import Any, Dict, Optional
import logging

from storefront.errors import (
    AlreadyInProgress,
    AlreadyPaid,
    InvalidPaymentMethod,
    OrderNotFound,
    TranRefUsed,
    TransitionDenied,
)
from storefront.orders import repository as orders_repo
from storefront.orders.models import PAYABLE_STATUSES, PaymentMethod, PaymentStatus
from storefront.utils.guards import InFlightGuard, get_guard
from .models import Ambiguous, Approved
from .paytabs_client import PayTabsClient
from .reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


def _load_payable_order(user: Dict[str, Any], order_id: str) -> Dict[str, Any]:
    is_admin = user.get("role") == "admin"
    order = orders_repo.get_order(order_id, user_token=None if is_admin else user.get("token"))
    if not order or (not is_admin and str(order.get("user_id")) != str(user.get("id"))):
        raise OrderNotFound()
    if order.get("payment_method") == PaymentMethod.COD.value:
        raise InvalidPaymentMethod("Cette commande est payable à la livraison")
    if order.get("payment_status") == PaymentStatus.PAID.value:
        raise AlreadyPaid()
    if order.get("status") not in PAYABLE_STATUSES:
        raise TransitionDenied(f"Commande non payable (statut {order.get('status')})")
    return order


async def _settle_existing_transaction(order: Dict[str, Any], engine: ReconciliationEngine) -> None:
    """La commande a déjà sa transaction: on la résout, sans jamais en ouvrir une seconde."""
    if order.get("payment_status") == PaymentStatus.FAILED.value:
        raise TranRefUsed()
    result = await engine.client.query(order["tran_ref"])
    if isinstance(result, Ambiguous):
        raise AlreadyInProgress("Un paiement est déjà en cours pour cette commande")
    outcome = engine.apply_result(result, order_id=str(order["id"]))
    if isinstance(result, Approved) or outcome.payment_status == PaymentStatus.PAID.value:
        raise AlreadyPaid()
    raise TranRefUsed()


async def create_transaction(
    user: Dict[str, Any],
    order_id: str,
    client: Optional[PayTabsClient] = None,
    guard: Optional[InFlightGuard] = None,
) -> Dict[str, str]:
    """
    Ouvre une page de paiement PayTabs pour la commande.
    - seuls l'id et le total de la commande sont envoyés
    - tran_ref est écrit si la commande est impayée et n'a encore aucune transaction
    Retour: {"tran_ref", "redirect_url"}
    """
    client = client or PayTabsClient()
    guard = guard or get_guard()

    with guard.hold(f"payment-create:{order_id}", AlreadyInProgress):
        order = _load_payable_order(user, order_id)
        if order.get("tran_ref"):
            await _settle_existing_transaction(order, ReconciliationEngine(client=client))

        created = await client.create_transaction_request(str(order["id"]), float(order.get("total") or 0))
        rows = orders_repo.update_order_where(
            {"tran_ref": created["tran_ref"]},
            order_id=str(order["id"]),
            status_in=PAYABLE_STATUSES,
            payment_status_neq=PaymentStatus.PAID.value,
            or_filter="tran_ref.is.null",
        )
        if not rows:
            current = orders_repo.get_order(str(order["id"]), fields="id, payment_status, tran_ref") or {}
            logger.warning("payment create: tran_ref %s not stored, order_id=%s now %s",
                           created["tran_ref"], order["id"], current.get("payment_status"))
            if current.get("payment_status") == PaymentStatus.PAID.value:
                raise AlreadyPaid()
            raise AlreadyInProgress("Un paiement est déjà en cours pour cette commande")

    logger.info("payment created order_id=%s tran_ref=%s", order["id"], created["tran_ref"])
    return created
