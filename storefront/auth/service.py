from typing import Optional, Dict, Any
from .repository import get_user_from_access_token as _repo_get_user_from_token, get_profile_role

ROLES = ("customer", "wholesaler", "admin")

def determine_role(profile_role: Optional[str]) -> str:
    role_lower = str(profile_role or "").strip().lower()
    if role_lower in ("wholesale", "wholesaler"):
        return "wholesaler"
    if role_lower == "admin":
        return "admin"
    return "customer"

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise user issu de supabase.auth.get_user(access_token):
    - Retourne {id, email, metadata, role, token}
    - Le rôle vient de la table profiles (défaut: customer)
    """
    raw = _repo_get_user_from_token(access_token)
    uid = raw.get("id")
    role = determine_role(get_profile_role(uid)) if uid else "customer"
    return {
        "id": uid,
        "email": raw.get("email"),
        "metadata": raw.get("user_metadata") or {},
        "role": role,
        "token": access_token,
    }
