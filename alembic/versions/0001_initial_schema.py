from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "kv_entries",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )
    op.create_index("idx_kv_entries_updated", "kv_entries", ["updated_at"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_kv_entries_updated", table_name="kv_entries")
    op.drop_table("kv_entries")
