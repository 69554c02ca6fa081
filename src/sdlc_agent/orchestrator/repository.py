"""Persistent development record store."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from sdlc_agent.orchestrator.models import (
    DevelopmentCreate,
    DevelopmentEventView,
    DevelopmentStatus,
    DevelopmentView,
    FailureClass,
    PipelineStep,
)
from sdlc_agent.storage.alembic_runner import upgrade_head
from sdlc_agent.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from sdlc_agent.storage.sqlmodel_models import Development, DevelopmentEvent

logger = logging.getLogger(__name__)

ABANDONED_ERROR_MESSAGE = "abandoned: consumer stopped before the development finished"


class DevelopmentRepository:
    """Development persistence facade backed by SQLModel + SQLite.

    Terminal transitions are conditional updates on ``status = 'ready'``, so a
    completed or failed record is never written again.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def create_development(self, payload: DevelopmentCreate) -> DevelopmentView:
        """Create a development record in the ready state."""

        now = utc_now()
        development_id = payload.development_id or str(uuid4())
        with Session(self.engine) as session:
            row = Development(
                development_id=development_id,
                jira_issue_id=payload.jira_issue_id,
                jira_issue_key=payload.jira_issue_key,
                jira_project_key=payload.jira_project_key,
                status=DevelopmentStatus.READY.value,
                created_at=to_db_datetime(now),
            )
            session.add(row)
            session.flush()
            self._add_event(
                session=session,
                development_id=development_id,
                event_type="created",
                step=None,
                status_from=None,
                status_to=DevelopmentStatus.READY,
                details={"jira_issue_key": payload.jira_issue_key},
            )
            session.commit()
            session.refresh(row)
            return _to_development_view(row)

    def update_progress(
        self,
        *,
        development_id: str,
        repository_url: str | None = None,
        branch_name: str | None = None,
    ) -> bool:
        """Record resolved repository/branch while the development is still ready."""

        values: dict[str, object] = {}
        if repository_url is not None:
            values["repository_url"] = repository_url
        if branch_name is not None:
            values["branch_name"] = branch_name
        if not values:
            return False
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Development)
                .where(
                    col(Development.development_id) == development_id,
                    col(Development.status) == DevelopmentStatus.READY.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def add_step_event(
        self,
        *,
        development_id: str,
        event_type: str,
        step: PipelineStep,
        details: dict[str, object] | None = None,
    ) -> None:
        """Append one step transition to the audit trail."""

        with Session(self.engine) as session:
            self._add_event(
                session=session,
                development_id=development_id,
                event_type=event_type,
                step=step,
                status_from=DevelopmentStatus.READY,
                status_to=DevelopmentStatus.READY,
                details=details or {},
            )
            session.commit()

    def mark_completed(
        self,
        *,
        development_id: str,
        pr_mr_url: str | None,
        development_details: str,
    ) -> bool:
        """Mark a ready development as completed."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Development)
                .where(
                    col(Development.development_id) == development_id,
                    col(Development.status) == DevelopmentStatus.READY.value,
                )
                .values(
                    status=DevelopmentStatus.COMPLETED.value,
                    pr_mr_url=pr_mr_url,
                    development_details=development_details,
                    completed_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                development_id=development_id,
                event_type="completed",
                step=PipelineStep.RECORD,
                status_from=DevelopmentStatus.READY,
                status_to=DevelopmentStatus.COMPLETED,
                details={"pr_mr_url": pr_mr_url},
            )
            session.commit()
            return True

    def mark_failed(
        self,
        *,
        development_id: str,
        error_message: str,
        failure_class: FailureClass,
        failed_step: PipelineStep | None,
    ) -> bool:
        """Mark a ready development as failed."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Development)
                .where(
                    col(Development.development_id) == development_id,
                    col(Development.status) == DevelopmentStatus.READY.value,
                )
                .values(
                    status=DevelopmentStatus.FAILED.value,
                    error_message=error_message,
                    failure_class=failure_class.value,
                    failed_step=failed_step.value if failed_step is not None else None,
                    completed_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                development_id=development_id,
                event_type="failed",
                step=failed_step,
                status_from=DevelopmentStatus.READY,
                status_to=DevelopmentStatus.FAILED,
                details={
                    "failure_class": failure_class.value,
                    "error_message": error_message,
                },
            )
            session.commit()
            return True

    def recover_abandoned(self, *, stale_after: timedelta) -> list[str]:
        """Fail ready developments older than ``stale_after``.

        Only a crashed consumer leaves ready records behind; they are closed
        so the store never shows work as pending forever.
        """

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered: list[str] = []
        with Session(self.engine) as session:
            rows = session.exec(
                select(Development).where(
                    Development.status == DevelopmentStatus.READY.value,
                    col(Development.created_at) < cutoff,
                ),
            ).all()
            for row in rows:
                result = session.exec(
                    sa_update(Development)
                    .where(
                        col(Development.development_id) == row.development_id,
                        col(Development.status) == DevelopmentStatus.READY.value,
                    )
                    .values(
                        status=DevelopmentStatus.FAILED.value,
                        error_message=ABANDONED_ERROR_MESSAGE,
                        failure_class=FailureClass.INTERNAL.value,
                        completed_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    development_id=row.development_id,
                    event_type="abandoned",
                    step=None,
                    status_from=DevelopmentStatus.READY,
                    status_to=DevelopmentStatus.FAILED,
                    details={"stale_after_seconds": int(stale_after.total_seconds())},
                )
                recovered.append(row.development_id)
            session.commit()
        if recovered:
            logger.warning("Recovered %d abandoned development(s)", len(recovered))
        return recovered

    def get_development(self, *, development_id: str) -> DevelopmentView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Development).where(Development.development_id == development_id),
            ).one_or_none()
            if row is None:
                return None
            return _to_development_view(row)

    def list_developments(
        self,
        *,
        status: DevelopmentStatus | None = None,
        jira_issue_key: str | None = None,
        limit: int = 20,
    ) -> list[DevelopmentView]:
        with Session(self.engine) as session:
            statement = select(Development)
            if status is not None:
                statement = statement.where(Development.status == status.value)
            if jira_issue_key is not None:
                statement = statement.where(Development.jira_issue_key == jira_issue_key)
            rows = session.exec(
                statement.order_by(col(Development.created_at).desc()).limit(max(1, limit)),
            ).all()
            return [_to_development_view(row) for row in rows]

    def list_events(self, *, development_id: str) -> list[DevelopmentEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(DevelopmentEvent)
                .where(DevelopmentEvent.development_id == development_id)
                .order_by(col(DevelopmentEvent.event_id).asc()),
            ).all()
            return [_to_event_view(row) for row in rows]

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        development_id: str,
        event_type: str,
        step: PipelineStep | None,
        status_from: DevelopmentStatus | None,
        status_to: DevelopmentStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            DevelopmentEvent(
                development_id=development_id,
                event_type=event_type,
                step=step.value if step is not None else None,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _to_development_view(row: Development) -> DevelopmentView:
    return DevelopmentView(
        development_id=row.development_id,
        jira_issue_id=row.jira_issue_id,
        jira_issue_key=row.jira_issue_key,
        jira_project_key=row.jira_project_key,
        repository_url=row.repository_url,
        branch_name=row.branch_name,
        pr_mr_url=row.pr_mr_url,
        status=DevelopmentStatus(row.status),
        development_details=row.development_details,
        error_message=row.error_message,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        failed_step=PipelineStep(row.failed_step) if row.failed_step is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )


def _to_event_view(row: DevelopmentEvent) -> DevelopmentEventView:
    return DevelopmentEventView(
        event_id=row.event_id or 0,
        development_id=row.development_id,
        event_type=row.event_type,
        step=PipelineStep(row.step) if row.step is not None else None,
        status_from=DevelopmentStatus(row.status_from) if row.status_from is not None else None,
        status_to=DevelopmentStatus(row.status_to) if row.status_to is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        details=json.loads(row.details_json) if row.details_json else {},
    )
