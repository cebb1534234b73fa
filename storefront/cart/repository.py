"""
Accès aux données du panier persistant (table cart_items).
Lectures: erreur loggée puis propagée (une panne n'est jamais un panier vide). Écritures: ligne/True si succès, None/False sinon (erreur loggée).
"""
from typing import List, Optional
import logging
import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def list_cart_lines(user_id: str, user_token: Optional[str] = None) -> List[dict]:
    if not user_id:
        return []
    try:
        res = (
            supabase_client.client_for(user_token)
            .table("cart_items")
            .select("id, product_id, quantity")
            .eq("user_id", user_id)
            .order("created_at", desc=False)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("cart.repository.list_cart_lines failed user_id=%s", user_id)
        raise

def find_cart_line(user_id: str, product_id: str, user_token: Optional[str] = None) -> Optional[dict]:
    try:
        res = (
            supabase_client.client_for(user_token)
            .table("cart_items")
            .select("id, product_id, quantity")
            .eq("user_id", user_id)
            .eq("product_id", product_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("cart.repository.find_cart_line failed user_id=%s product_id=%s", user_id, product_id)
        raise

def insert_cart_line(user_id: str, product_id: str, quantity: int, user_token: Optional[str] = None) -> Optional[dict]:
    try:
        res = (
            supabase_client.client_for(user_token)
            .table("cart_items")
            .insert({"user_id": user_id, "product_id": product_id, "quantity": quantity})
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else {"status": "ok"}
    except Exception:
        logger.exception("cart.repository.insert_cart_line failed user_id=%s product_id=%s", user_id, product_id)
        return None

def update_cart_line_quantity(line_id: str, quantity: int, user_token: Optional[str] = None) -> bool:
    try:
        (
            supabase_client.client_for(user_token)
            .table("cart_items")
            .update({"quantity": quantity})
            .eq("id", line_id)
            .execute()
        )
        return True
    except Exception:
        logger.exception("cart.repository.update_cart_line_quantity failed line_id=%s", line_id)
        return False

def delete_cart_products(user_id: str, product_ids: List[str], user_token: Optional[str] = None) -> bool:
    """Supprime les lignes des produits donnés pour cet utilisateur."""
    if not user_id or not product_ids:
        return True
    try:
        (
            supabase_client.client_for(user_token)
            .table("cart_items")
            .delete()
            .eq("user_id", user_id)
            .in_("product_id", [str(p) for p in product_ids])
            .execute()
        )
        return True
    except Exception:
        logger.exception("cart.repository.delete_cart_products failed user_id=%s", user_id)
        return False
