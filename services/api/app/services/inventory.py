import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import DomainError, Internal, NotFound
from app.models import CatalogIngredient, InventoryItem
from app.schemas import InventoryItemCreate
from app.services.catalog import find_or_create_ingredient

logger = logging.getLogger("fridgemate.inventory")


def bulk_insert(db: Session, owner_id: str, items: list[InventoryItemCreate]) -> int:
    """Insert recognized or hand-entered items in one transaction.

    Each row is linked to its canonical catalog ingredient (created on first use).
    """
    try:
        for item in items:
            ingredient = find_or_create_ingredient(db, item.name)
            db.add(InventoryItem(
                owner_id=owner_id,
                catalog_ref=ingredient.id,
                name=item.name.strip(),
                quantity_value=item.quantity_value,
                quantity_unit=item.quantity_unit,
                expiry_date=item.expiry_date,
            ))
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[User:{owner_id}] bulk insert failed: {e}")
        raise Internal("Could not save inventory items") from e

    logger.info(f"[User:{owner_id}] {len(items)} inventory item(s) added")
    return len(items)


def create_item(db: Session, owner_id: str, item: InventoryItemCreate) -> InventoryItem:
    try:
        ingredient = find_or_create_ingredient(db, item.name)
        row = InventoryItem(
            owner_id=owner_id,
            catalog_ref=ingredient.id,
            name=item.name.strip(),
            quantity_value=item.quantity_value,
            quantity_unit=item.quantity_unit,
            expiry_date=item.expiry_date,
        )
        db.add(row)
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[User:{owner_id}] create failed: {e}")
        raise Internal("Could not save inventory item") from e

    db.refresh(row)
    logger.info(f"[User:{owner_id}] inventory item {row.id} added")
    return row


def update_item(db: Session, owner_id: str, item_id: str, item: InventoryItemCreate) -> InventoryItem:
    """Overwrite every field of an owned item; the catalog link follows the name."""
    row = db.scalar(
        select(InventoryItem).where(InventoryItem.id == item_id, InventoryItem.owner_id == owner_id)
    )
    if not row:
        raise NotFound("Inventory item not found")

    try:
        ingredient = find_or_create_ingredient(db, item.name)
        row.catalog_ref = ingredient.id
        row.name = item.name.strip()
        row.quantity_value = item.quantity_value
        row.quantity_unit = item.quantity_unit
        row.expiry_date = item.expiry_date
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[User:{owner_id}] update of {item_id} failed: {e}")
        raise Internal("Could not update inventory item") from e

    db.refresh(row)
    logger.info(f"[User:{owner_id}] inventory item {item_id} updated")
    return row


def list_items(db: Session, owner_id: str) -> list[InventoryItem]:
    stmt = (
        select(InventoryItem)
        .where(InventoryItem.owner_id == owner_id)
        .order_by(InventoryItem.expiry_date.asc().nulls_last(), InventoryItem.name)
    )
    return list(db.scalars(stmt))


def expiring_items(db: Session, owner_id: str, days: int, today: Optional[date] = None) -> list[InventoryItem]:
    """Items expiring between today and today + days (inclusive)."""
    today = today or date.today()
    stmt = (
        select(InventoryItem)
        .where(
            InventoryItem.owner_id == owner_id,
            InventoryItem.expiry_date.is_not(None),
            InventoryItem.expiry_date >= today,
            InventoryItem.expiry_date <= today + timedelta(days=days),
        )
        .order_by(InventoryItem.expiry_date.asc())
    )
    return list(db.scalars(stmt))


def delete_item(db: Session, owner_id: str, item_id: str) -> None:
    item = db.scalar(
        select(InventoryItem).where(InventoryItem.id == item_id, InventoryItem.owner_id == owner_id)
    )
    if not item:
        raise NotFound("Inventory item not found")
    db.delete(item)
    db.commit()


def owned_catalog_ids(db: Session, owner_id: str) -> set[str]:
    """Catalog ingredient ids the user owns.

    Rows without a catalog_ref still count when a master ingredient has the same name.
    """
    stmt = (
        select(CatalogIngredient.id)
        .join(
            InventoryItem,
            or_(
                InventoryItem.catalog_ref == CatalogIngredient.id,
                and_(
                    InventoryItem.catalog_ref.is_(None),
                    func.lower(InventoryItem.name) == func.lower(CatalogIngredient.name),
                ),
            ),
        )
        .where(InventoryItem.owner_id == owner_id)
        .distinct()
    )
    return set(db.scalars(stmt))
