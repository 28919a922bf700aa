"""Inventory consumption ledger.

A cook action decrements several inventory rows at once. The whole list is
applied in one transaction: every row is locked (SELECT ... FOR UPDATE,
scoped to the owner) before it is checked and mutated, in the order given,
and any failure rolls back every decrement made earlier in the same call.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import DomainError, Internal, InsufficientStock, NotFound, UnitMismatch, ValidationFailed
from app.models import InventoryItem
from app.schemas import ConsumeItem, ConsumeResult

logger = logging.getLogger("fridgemate.consumption")

# inventory_items.quantity_value is Numeric(12, 3)
QUANTITY_SCALE = Decimal("0.001")


def lock_item_stmt(owner_id: str, item_id: str):
    # Rows of other owners never match, so they surface as NotFound
    return (
        select(InventoryItem)
        .where(InventoryItem.id == item_id, InventoryItem.owner_id == owner_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _apply_one(db: Session, owner_id: str, item: ConsumeItem) -> bool:
    """Decrement a single locked row. Returns True if the row was deleted."""
    row = db.execute(lock_item_stmt(owner_id, item.id)).scalar_one_or_none()
    if row is None:
        raise NotFound(f"Inventory item {item.id} not found")

    if row.quantity_unit != item.quantity_unit:
        raise UnitMismatch(
            f"Inventory item {item.id} is stored in '{row.quantity_unit}', "
            f"requested '{item.quantity_unit}'"
        )

    current = Decimal(str(row.quantity_value))
    requested = Decimal(str(item.quantity_value))
    if current < requested:
        raise InsufficientStock(
            f"Inventory item {item.id} has {current} {row.quantity_unit}, {requested} requested"
        )

    remaining = (current - requested).quantize(QUANTITY_SCALE, rounding=ROUND_HALF_UP)
    if remaining <= 0:
        db.delete(row)
        db.flush()
        return True

    row.quantity_value = remaining
    db.flush()
    return False


def consume(db: Session, owner_id: str, items: Iterable[ConsumeItem]) -> ConsumeResult:
    items = list(items)
    if not items:
        raise ValidationFailed("No items to consume")

    deleted: list[str] = []
    try:
        for item in items:
            if _apply_one(db, owner_id, item):
                deleted.append(item.id)
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[User:{owner_id}] consume transaction failed: {e}")
        raise Internal("Inventory update failed") from e

    logger.info(f"[User:{owner_id}] consumed {len(items)} item(s), {len(deleted)} row(s) emptied")
    return ConsumeResult(consumed=len(items), deleted_ids=deleted)
