from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from storefront.utils.security import require_user
from . import service as orders_service

router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])


@router.get("")
def recent_orders(limit: int = Query(5, ge=1, le=50), user: Dict[str, Any] = Depends(require_user)):
    return {"orders": orders_service.list_recent(user, limit)}


@router.get("/{order_id}")
def order_detail(order_id: str, user: Dict[str, Any] = Depends(require_user)):
    return orders_service.get_order_detail(user, order_id)
