from typing import Any, Dict, List, Optional
import logging
import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

ADDRESS_SNAPSHOT_FIELDS = (
    "full_name",
    "phone",
    "address_line_1",
    "address_line_2",
    "city",
    "state",
    "postal_code",
    "country",
)

def list_user_addresses(user_id: str, user_token: Optional[str] = None) -> List[Dict[str, Any]]:
    """Adresses de l'utilisateur, plus récentes d'abord. Les erreurs sont propagées (checkout)."""
    if not user_id:
        return []
    try:
        res = (
            supabase_client.client_for(user_token)
            .table("addresses")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("addresses.repository.list_user_addresses failed user_id=%s", user_id)
        raise
