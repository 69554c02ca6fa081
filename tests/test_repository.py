from __future__ import annotations

from datetime import timedelta

import allure
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from sdlc_agent.orchestrator.models import (
    DevelopmentCreate,
    DevelopmentStatus,
    FailureClass,
    PipelineStep,
)
from sdlc_agent.orchestrator.repository import ABANDONED_ERROR_MESSAGE, DevelopmentRepository
from sdlc_agent.storage.common import to_db_datetime, utc_now
from sdlc_agent.storage.sqlmodel_models import Development

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Development Records"),
]


def _create(repository: DevelopmentRepository, issue_key: str = "PROJ-1") -> str:
    development = repository.create_development(
        DevelopmentCreate(
            jira_issue_id="10001",
            jira_issue_key=issue_key,
            jira_project_key="PROJ",
        ),
    )
    return development.development_id


def test_create_development_starts_ready_with_created_event(repository) -> None:
    development_id = _create(repository)

    development = repository.get_development(development_id=development_id)
    events = repository.list_events(development_id=development_id)

    assert development is not None
    assert development.status is DevelopmentStatus.READY
    assert development.completed_at is None
    assert development.pr_mr_url is None
    assert development.created_at.tzinfo is not None
    assert [event.event_type for event in events] == ["created"]


def test_update_progress_records_repository_and_branch(repository) -> None:
    development_id = _create(repository)

    updated = repository.update_progress(
        development_id=development_id,
        repository_url="https://github.com/acme/service",
        branch_name="feature/PROJ-1",
    )

    development = repository.get_development(development_id=development_id)
    assert updated is True
    assert development.repository_url == "https://github.com/acme/service"
    assert development.branch_name == "feature/PROJ-1"


def test_mark_completed_sets_terminal_fields(repository) -> None:
    development_id = _create(repository)

    assert repository.mark_completed(
        development_id=development_id,
        pr_mr_url="https://github.com/acme/service/pull/7",
        development_details="2 files changed",
    )

    development = repository.get_development(development_id=development_id)
    assert development.status is DevelopmentStatus.COMPLETED
    assert development.pr_mr_url == "https://github.com/acme/service/pull/7"
    assert development.development_details == "2 files changed"
    assert development.completed_at is not None
    assert development.is_terminal


def test_terminal_state_is_immutable(repository) -> None:
    development_id = _create(repository)
    repository.mark_failed(
        development_id=development_id,
        error_message="no repositories configured for project",
        failure_class=FailureClass.BUSINESS_RULE,
        failed_step=PipelineStep.RESOLVE,
    )
    failed = repository.get_development(development_id=development_id)

    assert not repository.mark_completed(
        development_id=development_id,
        pr_mr_url="https://example/pr/1",
        development_details="late",
    )
    assert not repository.mark_failed(
        development_id=development_id,
        error_message="second failure",
        failure_class=FailureClass.INTERNAL,
        failed_step=PipelineStep.RECORD,
    )
    assert not repository.update_progress(development_id=development_id, branch_name="other")

    after = repository.get_development(development_id=development_id)
    assert after.status is DevelopmentStatus.FAILED
    assert after.error_message == "no repositories configured for project"
    assert after.failure_class is FailureClass.BUSINESS_RULE
    assert after.failed_step is PipelineStep.RESOLVE
    assert after.completed_at == failed.completed_at
    assert after.branch_name is None


def test_step_events_are_listed_in_order(repository) -> None:
    development_id = _create(repository)
    repository.add_step_event(
        development_id=development_id,
        event_type="step_started",
        step=PipelineStep.RESOLVE,
    )
    repository.add_step_event(
        development_id=development_id,
        event_type="step_started",
        step=PipelineStep.CLONE,
        details={"attempt": 1},
    )

    events = repository.list_events(development_id=development_id)

    assert [(event.event_type, event.step) for event in events] == [
        ("created", None),
        ("step_started", PipelineStep.RESOLVE),
        ("step_started", PipelineStep.CLONE),
    ]
    assert events[-1].details == {"attempt": 1}


def test_list_developments_filters_by_status_and_issue(repository) -> None:
    first = _create(repository, "PROJ-1")
    _create(repository, "PROJ-2")
    repository.mark_completed(development_id=first, pr_mr_url="u", development_details="d")

    completed = repository.list_developments(status=DevelopmentStatus.COMPLETED)
    ready = repository.list_developments(status=DevelopmentStatus.READY)
    by_issue = repository.list_developments(jira_issue_key="PROJ-2")

    assert [item.development_id for item in completed] == [first]
    assert [item.jira_issue_key for item in ready] == ["PROJ-2"]
    assert [item.jira_issue_key for item in by_issue] == ["PROJ-2"]
    assert len(repository.list_developments(limit=1)) == 1


def test_recover_abandoned_fails_only_stale_ready_records(repository) -> None:
    stale = _create(repository, "PROJ-1")
    fresh = _create(repository, "PROJ-2")
    with Session(repository.engine) as session:
        session.exec(
            sa_update(Development)
            .where(col(Development.development_id) == stale)
            .values(created_at=to_db_datetime(utc_now() - timedelta(hours=3))),
        )
        session.commit()

    recovered = repository.recover_abandoned(stale_after=timedelta(hours=2))

    assert recovered == [stale]
    stale_view = repository.get_development(development_id=stale)
    assert stale_view.status is DevelopmentStatus.FAILED
    assert stale_view.error_message == ABANDONED_ERROR_MESSAGE
    assert stale_view.failure_class is FailureClass.INTERNAL
    assert repository.get_development(development_id=fresh).status is DevelopmentStatus.READY
    assert repository.list_events(development_id=stale)[-1].event_type == "abandoned"


def test_get_unknown_development_returns_none(repository) -> None:
    assert repository.get_development(development_id="missing") is None
