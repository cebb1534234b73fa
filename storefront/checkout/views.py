"""Endpoints checkout.
- POST /api/v1/checkout/quote: totaux du panier courant (aucune écriture)
- POST /api/v1/checkout/orders: crée la commande (COD ou en ligne)
Le paiement en ligne se poursuit via /api/v1/payments/create.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from storefront.config import PAYTABS_CURRENCY
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import require_user
from .service import OrderFactory

router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


class CreateOrderIn(BaseModel):
    address_id: Optional[str] = None
    payment_method: str = "online"


def get_order_factory() -> OrderFactory:
    return OrderFactory()


@router.post("/quote")
def quote(user: Dict[str, Any] = Depends(require_user), factory: OrderFactory = Depends(get_order_factory)):
    return {"currency": PAYTABS_CURRENCY, **factory.quote(user).as_dict()}


@router.post("/orders", status_code=201, dependencies=[Depends(optional_rate_limit(10, 60))])
def create_order(
    body: CreateOrderIn,
    user: Dict[str, Any] = Depends(require_user),
    factory: OrderFactory = Depends(get_order_factory),
):
    order_id = factory.create(user, address_id=body.address_id, payment_method=body.payment_method)
    return {"order_id": order_id, "payment_method": body.payment_method.strip().lower()}
