"""Master lists and per-user allergy/tool membership sets.

The allergy and tool master lists are exposed as a versioned lookup table
(MasterDataTable) that is injected where names must be resolved to ids.
Membership sets are always replaced wholesale inside one transaction.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from redis.exceptions import RedisError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import Internal, ValidationFailed
from app.infra.redis_cache import get_or_set_json_sync
from app.models import Allergy, CatalogIngredient, Tool, UserAllergy, UserTool
from app.settings import settings

logger = logging.getLogger("fridgemate.catalog")


def _key(name: str) -> str:
    return name.strip().lower()


@dataclass(frozen=True)
class MasterDataTable:
    version: str
    allergies: dict[str, str] = field(default_factory=dict)  # normalized name -> id
    tools: dict[str, str] = field(default_factory=dict)

    def _resolve(self, kind: str, table: dict[str, str], names: Iterable[str]) -> list[str]:
        wanted = [_key(n) for n in names if n and n.strip()]
        unknown = [n for n in wanted if n not in table]
        if unknown:
            raise ValidationFailed(f"Unknown {kind}: {', '.join(sorted(set(unknown)))}")
        # dedupe, keep order
        return list(dict.fromkeys(table[n] for n in wanted))

    def allergy_ids(self, names: Iterable[str]) -> list[str]:
        return self._resolve("allergies", self.allergies, names)

    def tool_ids(self, names: Iterable[str]) -> list[str]:
        return self._resolve("tools", self.tools, names)

    def to_dict(self) -> dict:
        return {"version": self.version, "allergies": self.allergies, "tools": self.tools}

    @classmethod
    def from_dict(cls, data: dict) -> "MasterDataTable":
        return cls(version=data["version"], allergies=data["allergies"], tools=data["tools"])


def load_master_data(db: Session, version: str) -> MasterDataTable:
    allergies = {_key(a.name): a.id for a in db.scalars(select(Allergy))}
    tools = {_key(t.name): t.id for t in db.scalars(select(Tool))}
    return MasterDataTable(version=version, allergies=allergies, tools=tools)


def cached_master_data(db: Session, version: str | None = None) -> MasterDataTable:
    """Master lists for `version`, served from Redis when possible."""
    version = version or settings.master_data_version
    key = f"fridgemate:master:{version}"
    try:
        data, hit = get_or_set_json_sync(
            key,
            settings.master_data_cache_ttl_seconds,
            lambda: load_master_data(db, version).to_dict(),
        )
        return MasterDataTable.from_dict(data)
    except RedisError as e:
        logger.warning(f"Master data cache unavailable ({e}), reading from database")
        return load_master_data(db, version)


def find_or_create_ingredient(db: Session, name: str) -> CatalogIngredient:
    """Canonical catalog ingredient for `name`, created on first use."""
    clean = name.strip()
    if not clean:
        raise ValidationFailed("Ingredient name is empty")

    stmt = select(CatalogIngredient).where(func.lower(CatalogIngredient.name) == clean.lower())
    existing = db.scalar(stmt)
    if existing:
        return existing

    ingredient = CatalogIngredient(name=clean)
    db.add(ingredient)
    # unique(name) turns a concurrent duplicate insert into an IntegrityError here
    db.flush()
    return ingredient


def _replace_memberships(db: Session, model, column: str, user_id: str, ids: list[str]) -> None:
    try:
        db.execute(delete(model).where(model.user_id == user_id))
        db.add_all([model(user_id=user_id, **{column: i}) for i in ids])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[User:{user_id}] {model.__tablename__} replace failed: {e}")
        raise Internal("Could not update membership set") from e


def replace_user_allergies(db: Session, user_id: str, names: list[str], table: MasterDataTable) -> list[str]:
    ids = table.allergy_ids(names)
    _replace_memberships(db, UserAllergy, "allergy_id", user_id, ids)
    logger.info(f"[User:{user_id}] allergies replaced ({len(ids)})")
    return list_user_allergies(db, user_id)


def replace_user_tools(db: Session, user_id: str, names: list[str], table: MasterDataTable) -> list[str]:
    ids = table.tool_ids(names)
    _replace_memberships(db, UserTool, "tool_id", user_id, ids)
    logger.info(f"[User:{user_id}] tools replaced ({len(ids)})")
    return list_user_tools(db, user_id)


def list_user_allergies(db: Session, user_id: str) -> list[str]:
    stmt = (
        select(Allergy.name)
        .join(UserAllergy, UserAllergy.allergy_id == Allergy.id)
        .where(UserAllergy.user_id == user_id)
        .order_by(Allergy.name)
    )
    return list(db.scalars(stmt))


def list_user_tools(db: Session, user_id: str) -> list[str]:
    stmt = (
        select(Tool.name)
        .join(UserTool, UserTool.tool_id == Tool.id)
        .where(UserTool.user_id == user_id)
        .order_by(Tool.name)
    )
    return list(db.scalars(stmt))


def user_tool_ids(db: Session, user_id: str) -> set[str]:
    return set(db.scalars(select(UserTool.tool_id).where(UserTool.user_id == user_id)))


def user_allergy_names(db: Session, user_id: str) -> set[str]:
    return {_key(n) for n in list_user_allergies(db, user_id)}
