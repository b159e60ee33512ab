"""booking number counter

Revision ID: 9c3f41d2a6e8
Revises: 5a1e0c2b7d90
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "9c3f41d2a6e8"
down_revision = "5a1e0c2b7d90"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "booking_counters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # continue from numbers already issued
    op.execute(
        "INSERT INTO booking_counters (id, last_number, updated_at) "
        "SELECT 1, COALESCE(MAX(CAST(booking_number AS INTEGER)), 0), CURRENT_TIMESTAMP "
        "FROM appointments"
    )


def downgrade():
    op.drop_table("booking_counters")
