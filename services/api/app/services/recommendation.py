"""Candidate filter engine and recommendation gateway.

recommend() narrows the catalog to recipes the user can safely cook, asks
the ranking worker to order them, and resolves the ranking back to recipe
summaries. Filtering happens here; the ranker only orders what it is given.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.compute_gateway import ComputeGateway, WorkerKind
from app.errors import GatewayFailure, Internal, NotFound
from app.models import (
    CatalogIngredient,
    Recipe,
    RecipeIngredient,
    RecipeMainIngredient,
    RecipeTool,
    RecipeViewEvent,
    RecommendationEvent,
)
from app.schemas import RecipeStatOut, RecipeSummary, RecipeViewOut
from app.services.catalog import user_allergy_names, user_tool_ids
from app.services.inventory import owned_catalog_ids

logger = logging.getLogger("fridgemate.recommendation")


@dataclass
class Candidate:
    recipe_id: str
    ingredient_ids: list[str]

    def to_payload(self) -> dict:
        return {"recipeId": self.recipe_id, "ingredientIds": self.ingredient_ids}


def _grouped(db: Session, column_stmt) -> dict[str, set[str]]:
    grouped: dict[str, set[str]] = defaultdict(set)
    for recipe_id, value in db.execute(column_stmt):
        grouped[recipe_id].add(value)
    return grouped


def _escape_like(text: str) -> str:
    return text.replace("/", "//").replace("%", "/%").replace("_", "/_")


def filter_candidates(
    db: Session,
    *,
    query_text: str,
    allergy_names: set[str],
    tool_ids: set[str],
    owned_ids: set[str],
    require_main: bool,
) -> list[Candidate]:
    """Recipes matching the query that avoid allergens and need only owned tools.

    With require_main, a recipe also needs at least one main ingredient and
    every main ingredient must be owned.
    """
    stmt = select(Recipe.id).order_by(Recipe.created_at, Recipe.id)
    text = (query_text or "").strip()
    if text:
        search_pattern = f"%{_escape_like(text)}%"
        stmt = stmt.where(or_(
            Recipe.title.ilike(search_pattern, escape="/"),
            Recipe.description.ilike(search_pattern, escape="/"),
        ))
    recipe_ids = list(db.scalars(stmt))
    if not recipe_ids:
        return []

    ingredients = db.execute(
        select(RecipeIngredient.recipe_id, RecipeIngredient.ingredient_id, CatalogIngredient.name)
        .join(CatalogIngredient, CatalogIngredient.id == RecipeIngredient.ingredient_id)
        .where(RecipeIngredient.recipe_id.in_(recipe_ids))
        .order_by(RecipeIngredient.recipe_id, RecipeIngredient.ingredient_id)
    ).all()
    ingredient_ids: dict[str, list[str]] = defaultdict(list)
    allergic: set[str] = set()
    for recipe_id, ingredient_id, name in ingredients:
        ingredient_ids[recipe_id].append(ingredient_id)
        if name.strip().lower() in allergy_names:
            allergic.add(recipe_id)

    required_tools = _grouped(
        db,
        select(RecipeTool.recipe_id, RecipeTool.tool_id).where(RecipeTool.recipe_id.in_(recipe_ids)),
    )
    main_ingredients: dict[str, set[str]] = {}
    if require_main:
        main_ingredients = _grouped(
            db,
            select(RecipeMainIngredient.recipe_id, RecipeMainIngredient.ingredient_id)
            .where(RecipeMainIngredient.recipe_id.in_(recipe_ids)),
        )

    candidates = []
    for recipe_id in recipe_ids:
        if recipe_id in allergic:
            continue
        if not required_tools.get(recipe_id, set()) <= tool_ids:
            continue
        if not ingredient_ids.get(recipe_id):
            # nothing to rank on
            continue
        if require_main:
            mains = main_ingredients.get(recipe_id)
            if not mains or not mains <= owned_ids:
                continue
        candidates.append(Candidate(recipe_id, ingredient_ids[recipe_id]))
    return candidates


def _ranked_ids(result: dict, allowed: set[str]) -> list[str]:
    if not result.get("success"):
        raise GatewayFailure(result.get("message") or "Recipe ranking failed")
    recommendations = result.get("recommendations")
    if not isinstance(recommendations, list):
        raise GatewayFailure("Ranking result has no recommendation list")

    ranked: list[str] = []
    for entry in recommendations:
        recipe_id = entry.get("recipeId") if isinstance(entry, dict) else None
        if recipe_id is None:
            raise GatewayFailure("Ranking result entry has no recipeId")
        recipe_id = str(recipe_id)
        if recipe_id not in allowed:
            logger.warning(f"Ranker returned non-candidate recipe {recipe_id}, dropped")
            continue
        if recipe_id not in ranked:
            ranked.append(recipe_id)
    return ranked


def recipe_summaries(db: Session, recipe_ids: list[str]) -> list[RecipeSummary]:
    """Summaries for recipe_ids, in the given order."""
    if not recipe_ids:
        return []
    recipes = {r.id: r for r in db.scalars(select(Recipe).where(Recipe.id.in_(recipe_ids)))}
    names: dict[str, list[str]] = defaultdict(list)
    rows = db.execute(
        select(RecipeIngredient.recipe_id, CatalogIngredient.name)
        .join(CatalogIngredient, CatalogIngredient.id == RecipeIngredient.ingredient_id)
        .where(RecipeIngredient.recipe_id.in_(recipe_ids))
        .order_by(RecipeIngredient.recipe_id, CatalogIngredient.name)
    )
    for recipe_id, name in rows:
        names[recipe_id].append(name)

    return [
        RecipeSummary(
            id=recipes[rid].id,
            title=recipes[rid].title,
            description=recipes[rid].description,
            required_ingredients=names.get(rid, []),
            main_image_url=recipes[rid].main_image_url,
        )
        for rid in recipe_ids
        if rid in recipes
    ]


def log_recommendations(db: Session, owner_id: str, recipe_ids: list[str]) -> None:
    """Best-effort bulk append to the recommendation log."""
    if not recipe_ids:
        return
    try:
        db.add_all([RecommendationEvent(owner_id=owner_id, recipe_id=rid) for rid in recipe_ids])
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[User:{owner_id}] could not log recommendations: {e}")


def recommend(
    db: Session,
    gateway: ComputeGateway,
    owner_id: str,
    query_text: str,
    require_main: bool,
    selected_ingredient_ids: Optional[Iterable[str]] = None,
) -> list[RecipeSummary]:
    allergy_names = user_allergy_names(db, owner_id)
    tool_ids = user_tool_ids(db, owner_id)
    owned_ids = owned_catalog_ids(db, owner_id)

    candidates = filter_candidates(
        db,
        query_text=query_text,
        allergy_names=allergy_names,
        tool_ids=tool_ids,
        owned_ids=owned_ids,
        require_main=require_main,
    )
    if not candidates:
        logger.info(f"[User:{owner_id}] no candidates for query '{query_text}'")
        return []

    payload = {
        "userId": owner_id,
        "ownedIngredientIds": sorted(owned_ids),
        "query": {
            "queryText": query_text,
            "selectedIngredientIds": list(selected_ingredient_ids or []),
        },
        "requireMain": require_main,
        "candidates": [c.to_payload() for c in candidates],
    }
    logger.info(f"[User:{owner_id}] ranking {len(candidates)} candidate(s)")
    result = gateway.invoke(WorkerKind.RANKING, payload)

    ranked = _ranked_ids(result, {c.recipe_id for c in candidates})
    summaries = recipe_summaries(db, ranked)

    log_recommendations(db, owner_id, [s.id for s in summaries])
    logger.info(f"[User:{owner_id}] recommended {len(summaries)} recipe(s)")
    return summaries


def recommendation_stats(db: Session, limit: int = 10) -> list[RecipeStatOut]:
    """Top recipes by recommendation count plus view count."""
    rec_count = func.count(RecommendationEvent.id)
    stmt = (
        select(Recipe.id, Recipe.title, rec_count.label("recommendation_count"), Recipe.view_count)
        .outerjoin(RecommendationEvent, RecommendationEvent.recipe_id == Recipe.id)
        .group_by(Recipe.id, Recipe.title, Recipe.view_count)
        .order_by((func.coalesce(Recipe.view_count, 0) + rec_count).desc(), Recipe.title)
        .limit(limit)
    )
    return [
        RecipeStatOut(
            recipe_id=row.id,
            title=row.title,
            recommendation_count=row.recommendation_count,
            view_count=row.view_count or 0,
        )
        for row in db.execute(stmt)
    ]


def record_view(db: Session, owner_id: str, recipe_id: str) -> RecipeViewOut:
    """Log a recipe view and bump Recipe.view_count in the same transaction."""
    if db.get(Recipe, recipe_id) is None:
        raise NotFound("Recipe not found")
    try:
        db.add(RecipeViewEvent(owner_id=owner_id, recipe_id=recipe_id))
        db.execute(
            update(Recipe)
            .where(Recipe.id == recipe_id)
            .values(view_count=Recipe.view_count + 1)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[User:{owner_id}] could not record view of {recipe_id}: {e}")
        raise Internal("Could not record recipe view") from e

    view_count = db.execute(select(Recipe.view_count).where(Recipe.id == recipe_id)).scalar_one()
    logger.info(f"[User:{owner_id}] viewed recipe {recipe_id} ({view_count} views)")
    return RecipeViewOut(recipe_id=recipe_id, view_count=view_count)
