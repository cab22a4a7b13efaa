"""Audit table for model calls.

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 15:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "20261019_0002"
down_revision: str | None = "20261019_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "llm_interaction",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("scene_id", sa.Uuid()),
        sa.Column(
            "role",
            sa.Enum(
                "writer",
                "director",
                "cinematographer",
                "editor",
                "producer",
                "showrunner",
                name="agentrole",
                native_enum=False,
                length=20,
            ),
        ),
        sa.Column("job_id", sa.Uuid()),
        sa.Column("provider", sa.String(100), nullable=False),
        sa.Column("model", sa.String(200), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=False),
        sa.Column("max_tokens", sa.Integer(), nullable=False),
        sa.Column("response_content", sa.Text()),
        sa.Column("input_tokens", sa.Integer(), nullable=False),
        sa.Column("output_tokens", sa.Integer(), nullable=False),
        sa.Column("total_tokens", sa.Integer(), nullable=False),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text()),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_llm_interaction_scene_id", "llm_interaction", ["scene_id"])
    op.create_index("ix_llm_interaction_job_id", "llm_interaction", ["job_id"])
    op.create_index(
        "ix_llm_interaction_project_time", "llm_interaction", ["project_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("llm_interaction")
