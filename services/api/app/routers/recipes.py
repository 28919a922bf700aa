"""Recipe recommendation API router.

Endpoints:
- POST /api/recipes/recommend - Filter, rank and return recipes for the caller
- GET /api/recipes/stats/recommendations - Most recommended/viewed recipes
- POST /api/recipes/{recipe_id}/view - Log a recipe view and bump its view count
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.compute_gateway import ComputeGateway
from ..db import get_db
from ..deps import get_compute_gateway, get_current_user
from ..models import User
from ..schemas import RecipeStatOut, RecipeSummary, RecipeViewOut, RecommendRequest
from ..services import recommendation

router = APIRouter()
logger = logging.getLogger("fridgemate.recipes")


@router.post("/recipes/recommend", response_model=list[RecipeSummary])
def recommend_recipes(
    payload: RecommendRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: ComputeGateway = Depends(get_compute_gateway),
):
    """Ranked recipes the caller can cook. Gateway errors surface as 502/504."""
    logger.info(
        f"[User:{user.id}] recommend (query='{payload.query_text}', "
        f"selected={len(payload.selected_ingredient_ids)}, require_main={payload.require_main})"
    )
    return recommendation.recommend(
        db,
        gateway,
        user.id,
        payload.query_text,
        payload.require_main,
        selected_ingredient_ids=payload.selected_ingredient_ids,
    )


@router.get("/recipes/stats/recommendations", response_model=list[RecipeStatOut])
def recipe_stats(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return recommendation.recommendation_stats(db, limit=limit)


@router.post("/recipes/{recipe_id}/view", response_model=RecipeViewOut, status_code=201)
def record_recipe_view(
    recipe_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return recommendation.record_view(db, user.id, recipe_id)
