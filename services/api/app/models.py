"""SQLAlchemy ORM models for FridgeMate.

Tables:
- users: Owners of inventory, jobs and membership sets (managed upstream)
- ingredients_master / allergies / tools: Canonical master lists
- inventory_items: Per-user food inventory
- recipes (+ recipe_ingredients, recipe_tools, recipe_main_ingredients): Catalog
- recognition_jobs: Image recognition lifecycle records
- recommendation_events: Append-only recommendation log
- recipe_view_events: Append-only recipe view log
"""

from __future__ import annotations

import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Text,
    Integer,
    ForeignKey,
    Index,
    Numeric,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class JobStatus:
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    ACTIVE = (PENDING, PROCESSING)
    TERMINAL = (COMPLETED, FAILED)


class User(Base):
    """Account row. Created and edited by the profile service, read here."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    inventory: Mapped[list["InventoryItem"]] = relationship(
        "InventoryItem", back_populates="owner", cascade="all, delete-orphan"
    )


# --- Master lists ---

class CatalogIngredient(Base):
    """Canonical ingredient shared by inventory rows and recipe requirements."""
    __tablename__ = "ingredients_master"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Allergy(Base):
    __tablename__ = "allergies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)


class Tool(Base):
    __tablename__ = "tools"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)


class UserAllergy(Base):
    __tablename__ = "user_allergies"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    allergy_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("allergies.id", ondelete="CASCADE"), primary_key=True
    )


class UserTool(Base):
    __tablename__ = "user_tools"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    tool_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tools.id", ondelete="CASCADE"), primary_key=True
    )


# --- Inventory ---

class InventoryItem(Base):
    """One food item a user owns. Rows at zero quantity are deleted, never kept."""
    __tablename__ = "inventory_items"
    __table_args__ = (
        Index("ix_inventory_items_owner_id", "owner_id"),
        Index("ix_inventory_items_owner_expiry", "owner_id", "expiry_date"),
        CheckConstraint("quantity_value > 0", name="ck_inventory_items_positive_qty"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    catalog_ref: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("ingredients_master.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    quantity_value: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    quantity_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    owner: Mapped["User"] = relationship("User", back_populates="inventory")
    catalog_ingredient: Mapped[Optional["CatalogIngredient"]] = relationship("CatalogIngredient")


# --- Recipe catalog ---

class Recipe(Base):
    """Catalog recipe. Read-mostly; view_count is bumped by the browsing service."""
    __tablename__ = "recipes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    main_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    ingredients: Mapped[list["RecipeIngredient"]] = relationship(
        "RecipeIngredient", back_populates="recipe", cascade="all, delete-orphan"
    )
    tools: Mapped[list["RecipeTool"]] = relationship(
        "RecipeTool", back_populates="recipe", cascade="all, delete-orphan"
    )
    main_ingredients: Mapped[list["RecipeMainIngredient"]] = relationship(
        "RecipeMainIngredient", back_populates="recipe", cascade="all, delete-orphan"
    )


class RecipeIngredient(Base):
    __tablename__ = "recipe_ingredients"
    __table_args__ = (
        Index("ix_recipe_ingredients_ingredient_id", "ingredient_id"),
    )

    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True
    )
    ingredient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ingredients_master.id"), primary_key=True
    )
    quantity: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # "200g", "1 tbsp"

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="ingredients")
    ingredient: Mapped["CatalogIngredient"] = relationship("CatalogIngredient")


class RecipeTool(Base):
    __tablename__ = "recipe_tools"

    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True
    )
    tool_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tools.id"), primary_key=True
    )

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="tools")


class RecipeMainIngredient(Base):
    """Ingredients whose ownership gates a recipe when require_main is set."""
    __tablename__ = "recipe_main_ingredients"

    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True
    )
    ingredient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ingredients_master.id"), primary_key=True
    )

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="main_ingredients")


# --- Recognition jobs ---

class RecognitionJob(Base):
    """Image recognition job.

    State machine: PENDING → PROCESSING → COMPLETED | FAILED.
    result_payload is set only on COMPLETED, error_message only on FAILED.
    """
    __tablename__ = "recognition_jobs"
    __table_args__ = (
        Index("ix_recognition_jobs_owner_id", "owner_id"),
        Index("ix_recognition_jobs_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    image_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    original_filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING, server_default=JobStatus.PENDING
    )
    result_payload: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


# --- Recommendation log ---

class RecommendationEvent(Base):
    """Append-only; one row per recipe returned to a user."""
    __tablename__ = "recommendation_events"
    __table_args__ = (
        Index("ix_recommendation_events_recipe_id", "recipe_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class RecipeViewEvent(Base):
    """Append-only; one row per recipe detail view. Recipe.view_count mirrors the count."""
    __tablename__ = "recipe_view_events"
    __table_args__ = (
        Index("ix_recipe_view_events_recipe_id", "recipe_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
