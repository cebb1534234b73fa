"""
Signature des notifications PayTabs.

- Champs: HMAC-SHA256 (clé serveur) de "k1=v1&k2=v2..." sur les champs non vides triés,
  champ `signature` exclu; hexadécimal.
- En-tête `Signature`: HMAC-SHA256 du corps brut.
La comparaison est à temps constant.
"""
from typing import Any, Dict, Mapping
from urllib.parse import urlencode
import hashlib
import hmac
import json

SIGNATURE_FIELD = "signature"


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def canonical_fields(fields: Mapping[str, Any]) -> str:
    items: Dict[str, str] = {}
    for key in sorted(fields):
        if key == SIGNATURE_FIELD:
            continue
        value = fields[key]
        if value is None or value == "" or value == {} or value == []:
            continue
        items[key] = _as_text(value)
    return urlencode(items)


def compute_signature(fields: Mapping[str, Any], secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), canonical_fields(fields).encode("utf-8"), hashlib.sha256).hexdigest()


def compute_body_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body or b"", hashlib.sha256).hexdigest()


def verify_fields_signature(fields: Mapping[str, Any], secret: str) -> bool:
    received = str(fields.get(SIGNATURE_FIELD) or "").strip().lower()
    if not received or not secret:
        return False
    return hmac.compare_digest(compute_signature(fields, secret), received)


def verify_body_signature(raw_body: bytes, header_signature: str, secret: str) -> bool:
    received = (header_signature or "").strip().lower()
    if not received or not secret:
        return False
    return hmac.compare_digest(compute_body_signature(raw_body, secret), received)
