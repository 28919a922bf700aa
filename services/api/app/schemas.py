"""Pydantic schemas for FridgeMate API.

Request/response models for:
- Inventory (bulk insert, consume)
- Recognition jobs
- Recommendations
- Allergy / tool membership sets
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Literal

from pydantic import BaseModel, Field


# --- Inventory ---

class InventoryItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    expiry_date: date
    quantity_value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=3)
    quantity_unit: str = Field(..., min_length=1, max_length=20)


class InventoryBulkCreate(BaseModel):
    items: list[InventoryItemCreate] = Field(..., min_length=1)


class InventoryBulkResult(BaseModel):
    created: int


class InventoryItemOut(BaseModel):
    id: str
    owner_id: str
    catalog_ref: Optional[str]
    name: str
    quantity_value: float
    quantity_unit: str
    expiry_date: Optional[date]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class ConsumeItem(BaseModel):
    id: str
    quantity_value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=3)
    quantity_unit: str = Field(..., min_length=1, max_length=20)


class ConsumeRequest(BaseModel):
    items: list[ConsumeItem] = Field(..., min_length=1)


class ConsumeResult(BaseModel):
    consumed: int
    deleted_ids: list[str] = []


# --- Recognition ---

JobStatusLiteral = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]


class Detection(BaseModel):
    label: str
    confidence: float
    bbox: list[float]


class RecognitionJobCreated(BaseModel):
    id: str
    status: JobStatusLiteral
    created_at: Optional[datetime] = None


class RecognitionJobView(BaseModel):
    """Status view. detections only when COMPLETED, error_message only when FAILED."""
    id: str
    status: JobStatusLiteral
    detections: Optional[list[Detection]] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None


# --- Recommendation ---

class RecommendRequest(BaseModel):
    query_text: str = ""
    selected_ingredient_ids: list[str] = []
    require_main: bool = False


class RecipeSummary(BaseModel):
    id: str
    title: str
    description: Optional[str]
    required_ingredients: list[str]
    main_image_url: Optional[str]


class RecipeStatOut(BaseModel):
    recipe_id: str
    title: str
    recommendation_count: int
    view_count: int


class RecipeViewOut(BaseModel):
    recipe_id: str
    view_count: int


# --- Membership sets ---

class MembershipUpdate(BaseModel):
    names: list[str] = []


class MembershipOut(BaseModel):
    names: list[str]
