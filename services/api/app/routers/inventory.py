"""Inventory API router.

Endpoints:
- GET /api/inventory - List the caller's items
- GET /api/inventory/expiring - Items expiring soon
- POST /api/inventory - Add one item
- PUT /api/inventory/{id} - Replace an item's fields
- POST /api/inventory/bulk - Add several items (e.g. after recognition)
- POST /api/inventory/consume - Decrement items after cooking (atomic)
- DELETE /api/inventory/{id} - Remove an item
"""

import asyncio

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.infra.idempotency import idempotency_clear_key, idempotency_precheck, idempotency_store_result

from ..db import get_db
from ..deps import get_current_user
from ..models import User
from ..schemas import (
    ConsumeRequest,
    ConsumeResult,
    InventoryBulkCreate,
    InventoryBulkResult,
    InventoryItemCreate,
    InventoryItemOut,
)
from ..services import consumption, inventory
from ..settings import settings

router = APIRouter()


@router.get("", response_model=list[InventoryItemOut])
def list_inventory(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return inventory.list_items(db, user.id)


@router.get("/expiring", response_model=list[InventoryItemOut])
def list_expiring(
    days: int = Query(settings.expiring_window_days, ge=0, le=30),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Items whose expiry date falls within the next `days` days."""
    return inventory.expiring_items(db, user.id, days)


@router.post("", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
def create_inventory_item(
    payload: InventoryItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return inventory.create_item(db, user.id, payload)


@router.put("/{item_id}", response_model=InventoryItemOut)
def update_inventory_item(
    item_id: str,
    payload: InventoryItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return inventory.update_item(db, user.id, item_id, payload)


@router.post("/bulk", response_model=InventoryBulkResult, status_code=status.HTTP_201_CREATED)
def bulk_create(
    payload: InventoryBulkCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    created = inventory.bulk_insert(db, user.id, payload.items)
    return InventoryBulkResult(created=created)


@router.post("/consume", response_model=ConsumeResult)
async def consume_items(
    request: Request,
    payload: ConsumeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Apply a cook action. All items are decremented or none are.

    An optional Idempotency-Key header makes client retries safe.
    """
    pre = await idempotency_precheck(request, user_id=user.id, route_key="inventory_consume", required=False)
    if isinstance(pre, JSONResponse):
        return pre

    try:
        # consume() can wait on row locks
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, consumption.consume, db, user.id, payload.items)
    except Exception:
        if pre:
            await idempotency_clear_key(pre[0])
        raise

    if pre:
        redis_key, req_hash, _ = pre
        await idempotency_store_result(redis_key, req_hash, status=200, body=result.model_dump())
    return result


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_inventory_item(
    item_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    inventory.delete_item(db, user.id, item_id)
