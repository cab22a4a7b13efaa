"""Initial schema: projects, scenes, proposals, jobs and the event store.

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=20)


def upgrade() -> None:
    op.create_table(
        "project",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("logline", sa.Text()),
        sa.Column("budget_cap_usd", sa.Numeric(12, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "scene",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("project.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("script", sa.Text(), nullable=False),
        sa.Column("narrative_goal", sa.Text(), nullable=False),
        sa.Column("emotional_beat", sa.Text(), nullable=False),
        sa.Column("location", sa.Text(), nullable=False),
        sa.Column("time_of_day", sa.String(50), nullable=False),
        sa.Column("character_names", sa.JSON(), nullable=False),
        sa.Column("runtime_target_seconds", sa.Integer(), nullable=False),
        sa.Column(
            "status", _enum("scenestatus", "draft", "review", "approved"), nullable=False
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("locked_until", sa.DateTime()),
        sa.Column("locked_by", sa.String(200)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("project_id", "number"),
    )
    op.create_index("ix_scene_project_id", "scene", ["project_id"])

    op.create_table(
        "agent_proposal",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "scene_id",
            sa.Uuid(),
            sa.ForeignKey("scene.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("job_id", sa.Uuid()),
        sa.Column(
            "role",
            _enum(
                "agentrole",
                "writer",
                "director",
                "cinematographer",
                "editor",
                "producer",
                "showrunner",
            ),
            nullable=False,
        ),
        sa.Column(
            "status",
            _enum("proposalstatus", "pending", "applied", "dismissed"),
            nullable=False,
        ),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=False),
        sa.Column("diff", sa.Text(), nullable=False),
        sa.Column("runtime_impact_seconds", sa.Integer(), nullable=False),
        sa.Column("tokens_used", sa.Integer(), nullable=False),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False),
        sa.Column("model", sa.String(200)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("resolved_by", sa.String(200)),
    )
    op.create_index("ix_agent_proposal_scene_id", "agent_proposal", ["scene_id"])
    op.create_index("ix_agent_proposal_job_role", "agent_proposal", ["job_id", "role"])

    op.create_table(
        "event_store",
        sa.Column(
            "sequence",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("event_id", sa.Uuid(), nullable=False, unique=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("project_id", sa.Uuid()),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("emitted_by", sa.String(200), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_event_store_event_type", "event_store", ["event_type"])
    op.create_index("ix_event_store_project_id", "event_store", ["project_id"])
    op.create_index(
        "ix_event_store_project_time", "event_store", ["project_id", "timestamp"]
    )
    op.create_index(
        "ix_event_store_entity_time", "event_store", ["entity_id", "timestamp"]
    )

    op.create_table(
        "pipeline_job",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_type", _enum("jobtype", "agent_pipeline", "render"), nullable=False
        ),
        sa.Column("scene_id", sa.Uuid(), nullable=False),
        sa.Column(
            "state",
            _enum(
                "jobstate", "scheduled", "processing", "succeeded", "failed", "cancelled"
            ),
            nullable=False,
        ),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text()),
        sa.Column("error_code", sa.String(50)),
        sa.Column("run_at", sa.DateTime(), nullable=False),
        sa.Column("lease_until", sa.DateTime()),
        sa.Column("worker_id", sa.String(200)),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_changed_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_pipeline_job_scene_id", "pipeline_job", ["scene_id"])
    op.create_index("ix_pipeline_job_state_run_at", "pipeline_job", ["state", "run_at"])

    # The event store is append-only at the database level too.
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute(
            """
            CREATE OR REPLACE FUNCTION event_store_reject_mutation() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'event_store is append-only';
            END;
            $$ LANGUAGE plpgsql
            """
        )
        op.execute(
            """
            CREATE TRIGGER event_store_append_only
            BEFORE UPDATE OR DELETE ON event_store
            FOR EACH ROW EXECUTE FUNCTION event_store_reject_mutation()
            """
        )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS event_store_append_only ON event_store")
        op.execute("DROP FUNCTION IF EXISTS event_store_reject_mutation()")
    op.drop_table("pipeline_job")
    op.drop_table("event_store")
    op.drop_table("agent_proposal")
    op.drop_table("scene")
    op.drop_table("project")
