"""Wire format of work requests and error-queue envelopes."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sdlc_agent.orchestrator.models import WorkRequest
from sdlc_agent.storage.common import utc_now

_REQUIRED_FIELDS = ("jira_issue_key", "jira_project_key")
_OPTIONAL_FIELDS = ("jira_issue_id", "summary", "description", "repository")


class MessageDecodeError(ValueError):
    """Message body is not a valid work request."""


def decode_work_request(body: bytes | str) -> WorkRequest:
    """Parse a queue message body into a ``WorkRequest``."""

    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise MessageDecodeError(f"failed to unmarshal message: {error}") from error
    if not isinstance(payload, dict):
        raise MessageDecodeError(
            f"failed to unmarshal message: expected JSON object, got {type(payload).__name__}",
        )

    for name in _REQUIRED_FIELDS + _OPTIONAL_FIELDS:
        value = payload.get(name)
        if value is not None and not isinstance(value, str):
            raise MessageDecodeError(f"invalid message field {name}: expected string")
    missing = [name for name in _REQUIRED_FIELDS if not (payload.get(name) or "").strip()]
    if missing:
        raise MessageDecodeError(f"missing required message fields: {', '.join(missing)}")

    return WorkRequest(
        jira_issue_id=payload.get("jira_issue_id") or "",
        jira_issue_key=payload["jira_issue_key"].strip(),
        jira_project_key=payload["jira_project_key"].strip(),
        summary=payload.get("summary") or "",
        description=payload.get("description") or "",
        repository=(payload.get("repository") or "").strip() or None,
    )


def encode_work_request(request: WorkRequest) -> bytes:
    return json.dumps(request.to_payload(), ensure_ascii=False).encode("utf-8")


def build_error_envelope(
    body: bytes | str,
    error: str,
    *,
    now: datetime | None = None,
) -> bytes:
    """Wrap a rejected message body with the reason it was rejected."""

    original = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    timestamp = (now or utc_now()).isoformat(timespec="seconds").replace("+00:00", "Z")
    envelope = {"original_message": original, "error": error, "timestamp": timestamp}
    return json.dumps(envelope, ensure_ascii=False).encode("utf-8")


def extract_republish_payload(document: Any) -> WorkRequest:
    """Return the work request held by a raw request or an error envelope."""

    if isinstance(document, dict) and "original_message" in document:
        original = document["original_message"]
        if not isinstance(original, (str, bytes)):
            raise MessageDecodeError(
                "invalid error envelope: original_message must be a string, "
                f"got {type(original).__name__}",
            )
        return decode_work_request(original)
    return decode_work_request(json.dumps(document))
