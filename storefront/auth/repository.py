from typing import Optional, Dict, Any
import logging
import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def get_user_from_access_token(access_token: str) -> Dict[str, Any]:
    """Récupère et normalise l’utilisateur depuis supabase.auth.get_user(access_token)."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
        }
    return user or {}

def get_profile_role(user_id: str) -> Optional[str]:
    """Rôle applicatif (table profiles): customer | wholesaler | admin. None si absent/erreur."""
    if not user_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("profiles")
            .select("role")
            .eq("id", user_id)
            .single()
            .execute()
        )
        return (res.data or {}).get("role")
    except Exception:
        logger.exception("auth.repository.get_profile_role failed user_id=%s", user_id)
        return None
