from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .backend import BackendClient, CallResult, CallStatus
from .credentials import Session
from .utils import to_full_url

logger = logging.getLogger(__name__)

RUNNING_STATUSES = {"in_progress", "already_running", "already_indexing"}


class IndexStatus(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"
    FAILED = "failed"
    AUTH_FAILURE = "auth_failure"


@dataclass
class IndexOutcome:
    status: IndexStatus
    repo_url: str
    branch: str
    payload: Any = None
    message: Optional[str] = None

    @property
    def pending(self) -> bool:
        """True when the backend is (now) indexing the repository."""
        return self.status in (IndexStatus.ACCEPTED, IndexStatus.ALREADY_RUNNING)


def payload_error(payload: Any) -> Optional[str]:
    """Return the error message carried by a 2xx payload, if it carries one."""
    if not isinstance(payload, dict):
        return None
    if payload.get("status") == "error" or payload.get("success") is False:
        return str(payload.get("message") or payload.get("error") or "Unknown backend error")
    return None


def classify_index_result(result: CallResult, repo_url: str, branch: str) -> IndexOutcome:
    if result.needs_auth:
        return IndexOutcome(IndexStatus.AUTH_FAILURE, repo_url, branch, message=result.message)

    if result.status is CallStatus.ERROR:
        if result.status_code == 409:
            return IndexOutcome(
                IndexStatus.ALREADY_RUNNING, repo_url, branch, message=result.message
            )
        return IndexOutcome(IndexStatus.FAILED, repo_url, branch, message=result.message)

    payload = result.payload
    error = payload_error(payload)
    if error is not None:
        return IndexOutcome(IndexStatus.FAILED, repo_url, branch, payload=payload, message=error)

    if isinstance(payload, dict) and str(payload.get("status", "")).lower() in RUNNING_STATUSES:
        return IndexOutcome(IndexStatus.ALREADY_RUNNING, repo_url, branch, payload=payload)

    return IndexOutcome(IndexStatus.ACCEPTED, repo_url, branch, payload=payload)


async def trigger_index(
    client: BackendClient,
    session: Session,
    repository: str,
    branch: str | None = None,
) -> IndexOutcome:
    """Ask the backend to index ``repository``. Does not wait for completion."""
    repo_url = to_full_url(repository, client.cfg.repo_host)
    branch = branch or client.cfg.default_branch

    logger.info("Triggering indexing of %s (branch %s)", repo_url, branch)
    result = await client.call(
        session,
        "POST",
        client.cfg.index_path,
        json={"repo_url": repo_url, "branch": branch},
    )
    outcome = classify_index_result(result, repo_url, branch)
    logger.info("Indexing request for %s: %s", repo_url, outcome.status.value)
    return outcome
