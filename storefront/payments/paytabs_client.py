"""
Adaptateur PayTabs (page de paiement hébergée): centralise les appels HTTP et la configuration.

- create_transaction_request(): POST /payment/request, retourne {tran_ref, redirect_url}
- query(): POST /payment/query, retourne un résultat typé (Approved | Declined | Ambiguous)

Erreurs réseau / timeouts / 5xx -> GatewayError (transitoire, jamais "paiement échoué").
Réponse illisible -> InvalidGatewayResponse.
"""
from typing import Any, Dict, Optional
import logging

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.config import GatewayConfig
from storefront.errors import GatewayConfigError, GatewayError, InvalidGatewayResponse
from .models import GatewayResult, result_from_query

logger = logging.getLogger(__name__)


def http_retry():
    return retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )


class PayTabsClient:
    def __init__(self, config: Optional[GatewayConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or GatewayConfig.from_env()
        self._transport = transport

    def _require(self, *names: str) -> None:
        missing = [n for n in self.config.missing_fields() if not names or n in names]
        if missing:
            logger.error("paytabs config missing: %s", ", ".join(missing))
            raise GatewayConfigError()

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            transport=self._transport,
            headers={"Authorization": self.config.server_key, "Content-Type": "application/json"},
        )

    async def _send(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        async with self._http() as client:
            return await client.post(path, json=payload)

    @http_retry()
    async def _send_idempotent(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        return await self._send(path, payload)

    async def _post(self, path: str, payload: Dict[str, Any], retry_transport: bool = False) -> Dict[str, Any]:
        try:
            if retry_transport:
                resp = await self._send_idempotent(path, payload)
            else:
                resp = await self._send(path, payload)
        except httpx.TimeoutException as e:
            logger.warning("paytabs %s timeout: %s", path, e)
            raise GatewayError("Le service de paiement ne répond pas, veuillez réessayer")
        except httpx.TransportError as e:
            logger.warning("paytabs %s transport error: %s", path, e)
            raise GatewayError()

        if resp.status_code >= 500:
            logger.warning("paytabs %s http %s", path, resp.status_code)
            raise GatewayError()
        try:
            data = resp.json()
        except ValueError:
            logger.error("paytabs %s non-JSON response http=%s", path, resp.status_code)
            raise InvalidGatewayResponse()
        if resp.status_code >= 400:
            logger.error("paytabs %s rejected http=%s body=%s", path, resp.status_code, data)
            message = data.get("message") if isinstance(data, dict) else None
            raise InvalidGatewayResponse(f"PayTabs a refusé la requête: {message}" if message else None)
        return data

    def _profile_id(self):
        pid = self.config.profile_id
        return int(pid) if str(pid).isdigit() else pid

    async def create_transaction_request(self, order_id: str, amount: float, description: Optional[str] = None) -> Dict[str, Any]:
        """Seuls l'id de commande et le montant sont transmis (pas de données client)."""
        self._require()
        payload = {
            "profile_id": self._profile_id(),
            "tran_type": "sale",
            "tran_class": "ecom",
            "cart_id": str(order_id),
            "cart_description": description or f"Order {order_id}",
            "cart_currency": self.config.currency,
            "cart_amount": amount,
            "callback": self.config.callback_url,
            "return": self.config.return_url,
            "hide_shipping": True,
        }
        logger.info("paytabs create order_id=%s amount=%s %s", order_id, amount, self.config.currency)
        data = await self._post("/payment/request", payload)
        tran_ref = data.get("tran_ref") if isinstance(data, dict) else None
        redirect_url = data.get("redirect_url") if isinstance(data, dict) else None
        if not tran_ref or not redirect_url:
            logger.error("paytabs create: tran_ref/redirect_url missing order_id=%s", order_id)
            raise InvalidGatewayResponse()
        return {"tran_ref": str(tran_ref), "redirect_url": str(redirect_url)}

    async def query(self, tran_ref: str) -> GatewayResult:
        self._require("PAYTABS_BASE_URL", "PAYTABS_SERVER_KEY", "PAYTABS_PROFILE_ID")
        data = await self._post(
            "/payment/query",
            {"profile_id": self._profile_id(), "tran_ref": tran_ref},
            retry_transport=True,
        )
        result = result_from_query(data, requested_ref=tran_ref)
        logger.info("paytabs query tran_ref=%s -> %s", tran_ref, type(result).__name__)
        return result
