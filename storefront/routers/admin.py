"""
Admin / operational endpoints.

GET  /admin/health
GET  /admin/orders
GET  /admin/orders/{order_id}
POST /admin/orders/{order_id}/status
GET  /admin/webhook-events
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.deps import require_admin_token
from storefront.models import OrderStatus, WebhookEventRecord
from storefront.schemas import (
    HealthResponse,
    OrderRead,
    StatusUpdate,
    StatusUpdateResponse,
    WebhookEventRead,
)
from storefront.services import orders

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        db_status = "error"
    return HealthResponse(status="ok", db=db_status)


@router.get(
    "/orders",
    response_model=List[OrderRead],
    dependencies=[Depends(require_admin_token)],
)
async def list_all_orders(
    status: Optional[OrderStatus] = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
) -> List[OrderRead]:
    rows = await orders.list_orders(
        db,
        status=status.value if status else None,
        limit=min(limit, 500),
        offset=max(offset, 0),
    )
    return [OrderRead.model_validate(r) for r in rows]


@router.get(
    "/orders/{order_id}",
    response_model=OrderRead,
    dependencies=[Depends(require_admin_token)],
)
async def get_any_order(order_id: str, db: AsyncSession = Depends(get_db)) -> OrderRead:
    order = await orders.get_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id!r} not found")
    return OrderRead.model_validate(order)


@router.post(
    "/orders/{order_id}/status",
    response_model=StatusUpdateResponse,
    dependencies=[Depends(require_admin_token)],
)
async def set_order_status(
    order_id: str,
    payload: StatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> StatusUpdateResponse:
    updated = await orders.update_status(db, order_id, payload.status)
    if not updated:
        raise HTTPException(status_code=404, detail=f"Order {order_id!r} not found")
    await db.commit()
    return StatusUpdateResponse(
        success=True, order_id=order_id, status=payload.status.value
    )


@router.get(
    "/webhook-events",
    response_model=List[WebhookEventRead],
    dependencies=[Depends(require_admin_token)],
)
async def list_webhook_events(
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
) -> List[WebhookEventRead]:
    rows = (
        await db.execute(
            select(WebhookEventRecord)
            .order_by(WebhookEventRecord.processed_at.desc())
            .limit(min(limit, 500))
        )
    ).scalars().all()
    return [WebhookEventRead.model_validate(r) for r in rows]
