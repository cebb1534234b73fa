"""
Back-office commandes (admin uniquement).
- PATCH /api/v1/admin/orders/{order_id}/status: transition manuelle, contrôlée par la machine à états
- POST  /api/v1/admin/orders/{order_id}/reconcile: interroge PayTabs avec le tran_ref stocké et applique le résultat
"""
from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storefront.orders import service as orders_service
from storefront.orders.models import OrderStatus
from storefront.payments.reconciliation import ReconciliationEngine, get_engine
from storefront.utils.security import require_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


class StatusIn(BaseModel):
    status: OrderStatus
    reason: str = Field(default="", max_length=500)


# module storefront.admin.views
@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusIn, user: Dict[str, Any] = Depends(require_admin)):
    row = orders_service.update_status(order_id, body.status.value, actor_id=user.get("id"))
    if body.reason:
        logger.info("admin status change order_id=%s reason=%s", order_id, body.reason)
    return {"ok": True, "order": row}


@router.post("/orders/{order_id}/reconcile")
async def reconcile_order(
    order_id: str,
    user: Dict[str, Any] = Depends(require_admin),
    engine: ReconciliationEngine = Depends(get_engine),
):
    outcome = await engine.reconcile_by_query(order_id=order_id)
    logger.info("admin reconcile order_id=%s by=%s action=%s", order_id, user.get("id"), outcome.action)
    return {"ok": True, **outcome.to_dict()}
