"""Initial schema: records (doctors, patients, appointments).

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "records",
        sa.Column("collection", sa.String(), nullable=False),
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("doctor_id", sa.String(), nullable=True),
        sa.Column("date", sa.String(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("collection", "id"),
    )
    op.create_index(op.f("ix_records_doctor_id"), "records", ["doctor_id"], unique=False)
    op.create_index(op.f("ix_records_date"), "records", ["date"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_records_date"), table_name="records")
    op.drop_index(op.f("ix_records_doctor_id"), table_name="records")
    op.drop_table("records")
