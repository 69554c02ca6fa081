"""SQLModel ORM tables for development records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class Development(SQLModel, table=True):
    __tablename__ = "developments"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_developments_status_created", "status", "created_at"),)

    development_id: str = Field(primary_key=True)
    jira_issue_id: str = ""
    jira_issue_key: str = Field(index=True)
    jira_project_key: str = Field(index=True)
    repository_url: str | None = None
    branch_name: str | None = None
    pr_mr_url: str | None = None
    status: str = Field(index=True)
    development_details: str | None = Field(default=None, sa_column=Column(Text))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    failure_class: str | None = Field(default=None, index=True)
    failed_step: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class DevelopmentEvent(SQLModel, table=True):
    __tablename__ = "development_events"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_development_events_development_time", "development_id", "created_at"),
    )

    event_id: int | None = Field(default=None, primary_key=True)
    development_id: str = Field(
        sa_column=Column(
            ForeignKey("developments.development_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str = Field(index=True)
    step: str | None = None
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
