"""
Accès catalogue en lecture seule (table products), limité aux champs utiles au panier/checkout.
"""
from typing import Any, Dict, Iterable, List
import logging
import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = "id, name, retail_price, wholesale_price"

def fetch_products_by_ids(ids: List[str]) -> List[dict]:
    """
    Récupère les produits par leurs IDs.
    - Retourne [] si ids vide; une erreur Supabase est loggée puis propagée.
    """
    if not ids:
        return []
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select(PRODUCT_FIELDS)
            .in_("id", [str(i) for i in ids])
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("products.repository.fetch_products_by_ids failed ids=%s", ids)
        raise

def get_products_map(ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Retourne un dict {id: produit} à partir d’une liste d’IDs."""
    products = fetch_products_by_ids(list(dict.fromkeys(str(i) for i in ids)))
    return {str(p.get("id")): p for p in products}
