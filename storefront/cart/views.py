"""Endpoints du panier (invité ou connecté).
- GET    /api/v1/cart: lignes + produits joints
- POST   /api/v1/cart/items: ajoute/incrémente une ligne
- PATCH  /api/v1/cart/items/{product_id}: fixe la quantité (<= 0 supprime)
- DELETE /api/v1/cart/items/{product_id}
- POST   /api/v1/cart/merge: fusion du panier invité après connexion
Le panier invité vit dans la session signée (SessionMiddleware).
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from storefront.utils.security import optional_user, require_user
from . import service as cart_service
from .models import GuestCart

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])


class AddItemIn(BaseModel):
    product_id: str
    quantity: int = 1


class QuantityIn(BaseModel):
    quantity: int


def _cart_payload(user: Optional[Dict[str, Any]], guest: GuestCart) -> Dict[str, Any]:
    items = cart_service.load_cart(user, guest)
    return {
        "source": "account" if user else "guest",
        "items": [i.to_dict() for i in items],
        "count": sum(i.quantity for i in items),
    }


@router.get("")
def get_cart(request: Request, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    return _cart_payload(user, GuestCart(request.session))


@router.post("/items")
def add_cart_item(body: AddItemIn, request: Request, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    guest = GuestCart(request.session)
    cart_service.add_item(user, guest, body.product_id, body.quantity)
    return _cart_payload(user, guest)


@router.patch("/items/{product_id}")
def update_cart_item(product_id: str, body: QuantityIn, request: Request, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    guest = GuestCart(request.session)
    cart_service.set_item_quantity(user, guest, product_id, body.quantity)
    return _cart_payload(user, guest)


@router.delete("/items/{product_id}")
def delete_cart_item(product_id: str, request: Request, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    guest = GuestCart(request.session)
    cart_service.remove_item(user, guest, product_id)
    return _cart_payload(user, guest)


@router.post("/merge")
def merge_guest_cart(request: Request, user: Dict[str, Any] = Depends(require_user)):
    """Fusion invité -> compte, à appeler une fois après connexion (409 si déjà en cours)."""
    guest = GuestCart(request.session)
    result = cart_service.merge_guest_into_account(user, guest)
    payload = _cart_payload(user, guest)
    payload["merge"] = result.to_dict()
    return payload
