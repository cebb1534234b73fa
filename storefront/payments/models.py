"""
Résultats typés d'une interrogation PayTabs.

PayTabs renvoie un code `response_status` (A = approuvé, tout autre code non vide = refusé).
Les branches métier travaillent sur ces trois cas, jamais sur les champs bruts.
"""
from dataclasses import dataclass
from typing import Any, Optional, Union

APPROVED_CODE = "A"


@dataclass(frozen=True)
class Approved:
    tran_ref: str
    cart_id: Optional[str] = None
    status = "A"


@dataclass(frozen=True)
class Declined:
    tran_ref: str
    cart_id: Optional[str] = None
    code: str = ""

    @property
    def status(self) -> str:
        return self.code


@dataclass(frozen=True)
class Ambiguous:
    tran_ref: Optional[str] = None
    cart_id: Optional[str] = None
    reason: str = ""
    status = None


GatewayResult = Union[Approved, Declined, Ambiguous]


def _clean(v: Any) -> Optional[str]:
    s = str(v).strip() if v is not None else ""
    return s or None


def resolve_status(status: Any, tran_ref: Any = None, cart_id: Any = None, reason: str = "statut absent") -> GatewayResult:
    """Code PayTabs brut -> résultat typé."""
    code = (_clean(status) or "").upper()
    ref, cart = _clean(tran_ref), _clean(cart_id)
    if not code:
        return Ambiguous(tran_ref=ref, cart_id=cart, reason=reason)
    if not ref:
        return Ambiguous(tran_ref=None, cart_id=cart, reason="tran_ref absent")
    if code == APPROVED_CODE:
        return Approved(tran_ref=ref, cart_id=cart)
    return Declined(tran_ref=ref, cart_id=cart, code=code)


def result_from_query(data: Any, requested_ref: Optional[str] = None) -> GatewayResult:
    """Réponse JSON de /payment/query -> résultat typé."""
    if not isinstance(data, dict):
        return Ambiguous(tran_ref=requested_ref, reason="réponse non JSON objet")
    payment_result = data.get("payment_result")
    status = payment_result.get("response_status") if isinstance(payment_result, dict) else None
    return resolve_status(
        status,
        tran_ref=data.get("tran_ref") or requested_ref,
        cart_id=data.get("cart_id"),
        reason="payment_result.response_status absent",
    )
