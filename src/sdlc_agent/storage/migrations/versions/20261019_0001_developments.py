"""Create development records and step events."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "developments",
        sa.Column("development_id", sa.String(), nullable=False),
        sa.Column("jira_issue_id", sa.String(), nullable=False, server_default=""),
        sa.Column("jira_issue_key", sa.String(), nullable=False),
        sa.Column("jira_project_key", sa.String(), nullable=False),
        sa.Column("repository_url", sa.String(), nullable=True),
        sa.Column("branch_name", sa.String(), nullable=True),
        sa.Column("pr_mr_url", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("development_details", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("failed_step", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("development_id"),
    )
    op.create_index(
        "ix_developments_jira_issue_key",
        "developments",
        ["jira_issue_key"],
        unique=False,
    )
    op.create_index(
        "ix_developments_jira_project_key",
        "developments",
        ["jira_project_key"],
        unique=False,
    )
    op.create_index("ix_developments_status", "developments", ["status"], unique=False)
    op.create_index(
        "ix_developments_failure_class",
        "developments",
        ["failure_class"],
        unique=False,
    )
    op.create_index(
        "idx_developments_status_created",
        "developments",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "development_events",
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("development_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("step", sa.String(), nullable=True),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["development_id"],
            ["developments.development_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index(
        "ix_development_events_event_type",
        "development_events",
        ["event_type"],
        unique=False,
    )
    op.create_index(
        "idx_development_events_development_time",
        "development_events",
        ["development_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_development_events_development_time", table_name="development_events")
    op.drop_index("ix_development_events_event_type", table_name="development_events")
    op.drop_table("development_events")
    op.drop_index("idx_developments_status_created", table_name="developments")
    op.drop_index("ix_developments_failure_class", table_name="developments")
    op.drop_index("ix_developments_status", table_name="developments")
    op.drop_index("ix_developments_jira_project_key", table_name="developments")
    op.drop_index("ix_developments_jira_issue_key", table_name="developments")
    op.drop_table("developments")
