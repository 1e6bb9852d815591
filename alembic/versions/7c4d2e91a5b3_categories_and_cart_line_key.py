"""Add categories and a unique cart line key

Revision ID: 7c4d2e91a5b3
Revises: 3b1e6f0a9c27
Create Date: 2026-10-17 10:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7c4d2e91a5b3"
down_revision: Union[str, None] = "3b1e6f0a9c27"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_categories_id", "categories", ["id"])
    op.create_index("ix_categories_name", "categories", ["name"], unique=True)
    op.create_index("ix_categories_slug", "categories", ["slug"], unique=True)

    with op.batch_alter_table("products") as batch_op:
        batch_op.add_column(sa.Column("category_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_products_category_id", "categories", ["category_id"], ["id"]
        )
        batch_op.create_index("ix_products_category_id", ["category_id"], unique=False)

    # Collapse lines that already share a key before the key becomes unique
    bind = op.get_bind()
    bind.execute(
        sa.text(
            """
            DELETE FROM cart_items
            WHERE id NOT IN (
                SELECT MIN(id) FROM cart_items
                GROUP BY user_id, product_id, COALESCE(color, ''), COALESCE(size, '')
            )
            """
        )
    )
    op.drop_index("ix_cart_items_user_product", table_name="cart_items")
    op.create_index(
        "uq_cart_items_user_product_variant",
        "cart_items",
        [
            "user_id",
            "product_id",
            sa.text("COALESCE(color, '')"),
            sa.text("COALESCE(size, '')"),
        ],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("uq_cart_items_user_product_variant", table_name="cart_items")
    op.create_index("ix_cart_items_user_product", "cart_items", ["user_id", "product_id"])

    with op.batch_alter_table("products") as batch_op:
        batch_op.drop_index("ix_products_category_id")
        batch_op.drop_constraint("fk_products_category_id", type_="foreignkey")
        batch_op.drop_column("category_id")

    op.drop_index("ix_categories_slug", table_name="categories")
    op.drop_index("ix_categories_name", table_name="categories")
    op.drop_index("ix_categories_id", table_name="categories")
    op.drop_table("categories")
