"""initial scheduler state

Revision ID: 0001
Revises:
Create Date: 2024-01-01 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SLOT_STATES = (
    "EMPTY",
    "LAUNCH_PENDING",
    "STAGING",
    "RUNNING",
    "UNHEALTHY",
    "KILLING",
    "LOST",
    "FAILED",
)


def upgrade() -> None:
    op.create_table(
        "desired_spec",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("cpu", sa.Float(), nullable=False),
        sa.Column("memory", sa.Integer(), nullable=False),
        sa.Column("ports", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "executor_slots",
        sa.Column("slot_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("state", sa.Enum(*SLOT_STATES, name="slot_state"), nullable=False),
        sa.Column("task_id", sa.String(length=255), nullable=True),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("agent_id", sa.String(length=255), nullable=True),
        sa.Column("hostname", sa.String(length=255), nullable=True),
        sa.Column("http_port", sa.Integer(), nullable=True),
        sa.Column("transport_port", sa.Integer(), nullable=True),
        sa.Column("bound_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("running_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_health_ack_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("task_id", name="uq_executor_slots_task_id"),
    )
    op.create_index("ix_executor_slots_state", "executor_slots", ["state"])

    op.create_table(
        "framework_state",
        sa.Column("key", sa.String(length=100), primary_key=True),
        sa.Column("value", sa.String(length=255), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("framework_state")
    op.drop_index("ix_executor_slots_state", table_name="executor_slots")
    op.drop_table("executor_slots")
    op.drop_table("desired_spec")
    sa.Enum(name="slot_state").drop(op.get_bind(), checkfirst=True)
