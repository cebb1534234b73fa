"""
Accès aux données des commandes (tables orders, order_items).

Contrairement aux lectures catalogue, les erreurs Supabase sont loggées puis
propagées: une panne base ne doit jamais ressembler à « commande introuvable »
ni à un paiement échoué.
Les mises à jour passent par update_order_where(): les filtres PostgREST font
office de compare-and-set, la ligne n'est modifiée que si elle est encore
dans l'état attendu. La valeur de retour est la liste des lignes modifiées.
"""
from typing import Any, Dict, Iterable, List, Optional
import logging
import storefront.infra.supabase_client as supabase_client
from .models import ORDER_FIELDS, ORDER_ITEM_FIELDS

logger = logging.getLogger(__name__)

def insert_order(payload: Dict[str, Any], user_token: Optional[str] = None) -> Dict[str, Any]:
    try:
        res = supabase_client.client_for(user_token).table("orders").insert(payload).execute()
    except Exception:
        logger.exception("orders.repository.insert_order failed user_id=%s", payload.get("user_id"))
        raise
    rows = res.data or []
    if not rows or not rows[0].get("id"):
        raise RuntimeError("insert orders: aucune ligne retournée")
    return rows[0]

def insert_order_items(items: List[Dict[str, Any]], user_token: Optional[str] = None) -> None:
    if not items:
        return
    try:
        supabase_client.client_for(user_token).table("order_items").insert(items).execute()
    except Exception:
        logger.exception("orders.repository.insert_order_items failed order_id=%s", items[0].get("order_id"))
        raise

def delete_order(order_id: str, user_token: Optional[str] = None) -> bool:
    """Nettoyage compensatoire d'une commande incomplète (items puis commande)."""
    try:
        client = supabase_client.client_for(user_token)
        client.table("order_items").delete().eq("order_id", order_id).execute()
        client.table("orders").delete().eq("id", order_id).execute()
        return True
    except Exception:
        logger.exception("orders.repository.delete_order failed order_id=%s", order_id)
        return False

def get_order(order_id: str, fields: str = ORDER_FIELDS, user_token: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if not order_id:
        return None
    try:
        res = (
            supabase_client.client_for(user_token)
            .table("orders")
            .select(fields)
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.get_order failed order_id=%s", order_id)
        raise
    rows = res.data or []
    return rows[0] if rows else None

def get_order_by_tran_ref(tran_ref: str, fields: str = ORDER_FIELDS) -> Optional[Dict[str, Any]]:
    if not tran_ref:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(fields)
            .eq("tran_ref", tran_ref)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.get_order_by_tran_ref failed tran_ref=%s", tran_ref)
        raise
    rows = res.data or []
    return rows[0] if rows else None

def list_user_orders(user_id: str, limit: int = 5, user_token: Optional[str] = None) -> List[Dict[str, Any]]:
    if not user_id:
        return []
    try:
        res = (
            supabase_client.client_for(user_token)
            .table("orders")
            .select("id, user_id, total, status, payment_status, payment_method, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_user_orders failed user_id=%s", user_id)
        raise

def list_order_items(order_id: str, user_token: Optional[str] = None) -> List[Dict[str, Any]]:
    try:
        res = (
            supabase_client.client_for(user_token)
            .table("order_items")
            .select(ORDER_ITEM_FIELDS)
            .eq("order_id", order_id)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_order_items failed order_id=%s", order_id)
        raise

def update_order_where(
    changes: Dict[str, Any],
    *,
    order_id: Optional[str] = None,
    status_eq: Optional[str] = None,
    status_in: Optional[Iterable[str]] = None,
    payment_status_neq: Optional[str] = None,
    or_filter: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    UPDATE orders SET <changes> WHERE id = order_id AND <conditions>.
    - or_filter: syntaxe PostgREST, ex "tran_ref.is.null,tran_ref.eq.TST123"
    Toujours via le client service-role (webhooks, réconciliation, back-office).
    """
    if not order_id:
        raise ValueError("order_id is required")
    try:
        q = supabase_client.get_service_supabase().table("orders").update(changes).eq("id", order_id)
        if status_eq:
            q = q.eq("status", status_eq)
        if status_in:
            q = q.in_("status", list(status_in))
        if payment_status_neq:
            q = q.neq("payment_status", payment_status_neq)
        if or_filter:
            q = q.or_(or_filter)
        res = q.execute()
    except Exception:
        logger.exception("orders.repository.update_order_where failed order_id=%s changes=%s", order_id, sorted(changes))
        raise
    return res.data or []
