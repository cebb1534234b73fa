"""
Cas d'usage 'orders': lecture des commandes de l'utilisateur et changement de statut back-office.
"""
from typing import Any, Dict, List, Optional
import logging

from storefront.errors import OrderNotFound, TransitionDenied
from . import repository
from .status_machine import can_transition

logger = logging.getLogger(__name__)

RECENT_LIMIT_MAX = 50


def list_recent(user: Dict[str, Any], limit: int = 5) -> List[Dict[str, Any]]:
    limit = max(1, min(int(limit or 5), RECENT_LIMIT_MAX))
    return repository.list_user_orders(user["id"], limit=limit, user_token=user.get("token"))


def get_order_detail(user: Dict[str, Any], order_id: str) -> Dict[str, Any]:
    """Commande + lignes. Visible par son propriétaire ou un admin, sinon ORDER_NOT_FOUND."""
    is_admin = user.get("role") == "admin"
    token = None if is_admin else user.get("token")
    order = repository.get_order(order_id, user_token=token)
    if not order or (not is_admin and str(order.get("user_id")) != str(user.get("id"))):
        raise OrderNotFound()
    order["items"] = repository.list_order_items(order_id, user_token=token)
    return order


def update_status(order_id: str, target: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Changement de statut manuel (admin).
    Le prédicat can_transition() est évalué sur l'état lu, puis l'écriture est
    conditionnée à ce même statut: une écriture concurrente entre-temps fait échouer la mise à jour.
    """
    order = repository.get_order(order_id)
    if not order:
        raise OrderNotFound()

    current = order.get("status")
    decision = can_transition(current, target, order.get("payment_status"), order.get("payment_method"))
    if not decision:
        logger.info("transition denied order_id=%s %s -> %s: %s", order_id, current, target, decision.reason)
        raise TransitionDenied(decision.reason)

    rows = repository.update_order_where({"status": str(target)}, order_id=order_id, status_eq=current)
    if not rows:
        raise TransitionDenied("La commande a été modifiée entre-temps, veuillez recharger")
    logger.info("order status updated order_id=%s %s -> %s by=%s", order_id, current, target, actor_id)
    return rows[0]
