"""Initial schema: users, master lists, inventory, recipe catalog, recognition jobs

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("nickname", sa.String(80), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Master lists
    op.create_table(
        "ingredients_master",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(120), unique=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "allergies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(80), unique=True, nullable=False),
    )
    op.create_table(
        "tools",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(80), unique=True, nullable=False),
    )
    op.create_table(
        "user_allergies",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("allergy_id", sa.String(36), sa.ForeignKey("allergies.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "user_tools",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tool_id", sa.String(36), sa.ForeignKey("tools.id", ondelete="CASCADE"), primary_key=True),
    )

    # Inventory
    op.create_table(
        "inventory_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("catalog_ref", sa.String(36), sa.ForeignKey("ingredients_master.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("quantity_value", sa.Numeric(12, 3), nullable=False),
        sa.Column("quantity_unit", sa.String(20), nullable=False),
        sa.Column("expiry_date", sa.Date, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("quantity_value > 0", name="ck_inventory_items_positive_qty"),
    )
    op.create_index("ix_inventory_items_owner_id", "inventory_items", ["owner_id"])
    op.create_index("ix_inventory_items_owner_expiry", "inventory_items", ["owner_id", "expiry_date"])

    # Recipe catalog
    op.create_table(
        "recipes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("main_image_url", sa.String(500), nullable=True),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "recipe_ingredients",
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("ingredient_id", sa.String(36), sa.ForeignKey("ingredients_master.id"), primary_key=True),
        sa.Column("quantity", sa.String(50), nullable=True),
    )
    op.create_index("ix_recipe_ingredients_ingredient_id", "recipe_ingredients", ["ingredient_id"])
    op.create_table(
        "recipe_tools",
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tool_id", sa.String(36), sa.ForeignKey("tools.id"), primary_key=True),
    )
    op.create_table(
        "recipe_main_ingredients",
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("ingredient_id", sa.String(36), sa.ForeignKey("ingredients_master.id"), primary_key=True),
    )

    # Recognition jobs
    op.create_table(
        "recognition_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("image_ref", sa.String(500), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("result_payload", postgresql.JSONB, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_recognition_jobs_owner_id", "recognition_jobs", ["owner_id"])
    op.create_index("ix_recognition_jobs_status_created", "recognition_jobs", ["status", "created_at"])

    # Recommendation log
    op.create_table(
        "recommendation_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_recommendation_events_recipe_id", "recommendation_events", ["recipe_id"])

    op.create_table(
        "recipe_view_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_recipe_view_events_recipe_id", "recipe_view_events", ["recipe_id"])


def downgrade() -> None:
    op.drop_index("ix_recipe_view_events_recipe_id", table_name="recipe_view_events")
    op.drop_table("recipe_view_events")
    op.drop_index("ix_recommendation_events_recipe_id", table_name="recommendation_events")
    op.drop_table("recommendation_events")
    op.drop_index("ix_recognition_jobs_status_created", table_name="recognition_jobs")
    op.drop_index("ix_recognition_jobs_owner_id", table_name="recognition_jobs")
    op.drop_table("recognition_jobs")
    op.drop_table("recipe_main_ingredients")
    op.drop_table("recipe_tools")
    op.drop_index("ix_recipe_ingredients_ingredient_id", table_name="recipe_ingredients")
    op.drop_table("recipe_ingredients")
    op.drop_table("recipes")
    op.drop_index("ix_inventory_items_owner_expiry", table_name="inventory_items")
    op.drop_index("ix_inventory_items_owner_id", table_name="inventory_items")
    op.drop_table("inventory_items")
    op.drop_table("user_tools")
    op.drop_table("user_allergies")
    op.drop_table("tools")
    op.drop_table("allergies")
    op.drop_table("ingredients_master")
    op.drop_table("users")
