import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from storefront.errors import StorefrontError
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import require_user
from . import service as payments_service
from .paytabs_client import PayTabsClient
from .reconciliation import ReconciliationEngine, get_engine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])


class CreatePaymentIn(BaseModel):
    order_id: str = Field(..., min_length=1)


class VerifyIn(BaseModel):
    tran_ref: Optional[str] = None
    tranRef: Optional[str] = None


def get_paytabs_client() -> PayTabsClient:
    return PayTabsClient()


async def _read_fields(request: Request) -> Dict[str, Any]:
    """Corps JSON ou formulaire (PayTabs envoie les deux selon le canal)."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError:
            raise StorefrontError("Corps JSON invalide", code="INVALID_PAYLOAD")
        if not isinstance(data, dict):
            raise StorefrontError("Corps JSON invalide", code="INVALID_PAYLOAD")
        return data
    if "form" in content_type:
        form = await request.form()
        return {k: v for k, v in form.items()}
    return {}


# module storefront.payments.views
@router.post("/create", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_payment(
    body: CreatePaymentIn,
    user: Dict[str, Any] = Depends(require_user),
    client: PayTabsClient = Depends(get_paytabs_client),
):
    """
    Ouvre la page de paiement PayTabs pour une commande en attente de paiement.
    - Réponse: {tran_ref, redirect_url}; le front redirige le navigateur vers redirect_url
    - Erreurs: 404 commande inconnue, 400 commande COD, 409 déjà payée, 503 PayTabs indisponible
    """
    return await payments_service.create_transaction(user, body.order_id, client=client)


@router.post("/verify", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
async def verify_payment(
    body: VerifyIn,
    user: Dict[str, Any] = Depends(require_user),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Statut PayTabs courant d'une transaction (lecture seule): {ok, status, tran_ref, cart_id}."""
    return await engine.verify(body.tran_ref or body.tranRef or "", user=user)


@router.post("/webhook", include_in_schema=False)
async def paytabs_webhook(request: Request, engine: ReconciliationEngine = Depends(get_engine)):
    """
    Notification serveur-à-serveur PayTabs (JSON ou formulaire).
    - Signature vérifiée avant toute écriture (champ `signature` ou en-tête `Signature`)
    - Réponse: {"ok": true, ...} pour tout résultat traité, y compris les rejeux
    """
    raw_body = await request.body()
    fields = await _read_fields(request)
    result = await engine.handle_webhook(fields, raw_body=raw_body, header_signature=request.headers.get("signature"))
    logger.info("payments.webhook order_id=%s action=%s", result.get("order_id"), result.get("action"))
    return result


@router.api_route("/return", methods=["GET", "POST"], include_in_schema=False)
async def paytabs_return(request: Request, engine: ReconciliationEngine = Depends(get_engine)):
    """Retour navigateur depuis PayTabs: interroge PayTabs, applique, puis redirige vers la page résultat du front."""
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        params.update(await _read_fields(request))
    url = await engine.handle_return(params)
    return RedirectResponse(url, status_code=303)
