"""Search with automatic indexing recovery.

A search against a repository the backend has not indexed yet fails with a
"not found" style error. The orchestrator detects that, asks the backend to
index the repository and, depending on :class:`RetryMode`, either reports
that indexing has started or keeps retrying the search with a fixed delay
until the attempt budget runs out.

    SEARCHING -> CLASSIFYING -> DONE
                             -> INDEXING -> WAITING -> SEARCHING

Auth failures end the run immediately and are never retried.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import anyio

from .backend import AUTH_FAILURE_STATUSES, BackendClient, CallResult, CallStatus
from .credentials import Session
from .indexer import IndexOutcome, payload_error, trigger_index
from .logging_utils import time_block
from .utils import to_short_form

logger = logging.getLogger(__name__)

NOT_INDEXED_MARKERS = ("not found", "not indexed")
NOT_INDEXED_STATUS_CODES = {404, 500}

Sleep = Callable[[float], Awaitable[Any]]


class RetryMode(str, Enum):
    SINGLE_SHOT = "single-shot"
    POLLING = "polling"


class SearchState(str, Enum):
    SEARCHING = "searching"
    CLASSIFYING = "classifying"
    INDEXING = "indexing"
    WAITING = "waiting"
    DONE = "done"


class SearchKind(str, Enum):
    SUCCESS = "success"
    NOT_INDEXED = "not_indexed"
    AUTH_FAILURE = "auth_failure"
    ERROR = "error"


class ResultStatus(str, Enum):
    FOUND = "found"
    INDEXING_STARTED = "indexing_started"
    NOT_FOUND = "not_found"
    INDEX_FAILED = "index_failed"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"


@dataclass
class SearchRequest:
    query: str
    repository: str
    limit: int = 5
    branch: str = "main"
    repo_url: Optional[str] = None  # indexed instead of `repository` when set

    def __post_init__(self):
        if not self.query:
            raise ValueError("query must be a non-empty string")
        if self.limit < 1:
            raise ValueError("limit must be a positive integer")

    @property
    def index_target(self) -> str:
        return self.repo_url or self.repository


@dataclass
class SearchOutcome:
    kind: SearchKind
    payload: Any = None
    message: Optional[str] = None


@dataclass
class SearchResult:
    status: ResultStatus
    payload: Any = None
    message: Optional[str] = None
    attempts: int = 0
    index_calls: int = 0

    @property
    def is_error(self) -> bool:
        return self.status not in (ResultStatus.FOUND, ResultStatus.INDEXING_STARTED)


def classify_search_result(result: CallResult) -> SearchOutcome:
    """Single place deciding whether a failed search means "not indexed".

    Not indexed: the error message contains "not found" or "not indexed"
    (case-insensitive), or the backend answered 404 or 500.
    """
    if result.needs_auth or result.status_code in AUTH_FAILURE_STATUSES:
        return SearchOutcome(SearchKind.AUTH_FAILURE, message=result.message)

    if result.status is CallStatus.OK:
        error = payload_error(result.payload)
        if error is None:
            # Zero results is still a result.
            return SearchOutcome(SearchKind.SUCCESS, payload=result.payload)
        message = error
    else:
        message = result.message or ""

    lowered = message.lower()
    if result.status_code in NOT_INDEXED_STATUS_CODES or any(
        marker in lowered for marker in NOT_INDEXED_MARKERS
    ):
        return SearchOutcome(SearchKind.NOT_INDEXED, message=message)
    return SearchOutcome(SearchKind.ERROR, message=message)


class SearchOrchestrator:
    def __init__(
        self,
        client: BackendClient,
        mode: RetryMode = RetryMode.SINGLE_SHOT,
        summary: bool = False,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        sleep: Sleep = anyio.sleep,
    ):
        self.client = client
        self.mode = mode
        self.summary = summary
        self.max_attempts = max_attempts if max_attempts is not None else client.cfg.max_attempts
        self.retry_delay = retry_delay if retry_delay is not None else client.cfg.retry_delay
        self.sleep = sleep
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def _search_call(self, request: SearchRequest) -> tuple[str, Dict[str, Any]]:
        body: Dict[str, Any] = {
            "query": request.query,
            "repository": to_short_form(request.repository),
            "limit": request.limit,
        }
        if self.summary:
            body["branch"] = request.branch
            return "/search/summary", body
        return self.client.cfg.search_path, body

    async def run(self, session: Session, request: SearchRequest) -> SearchResult:
        with time_block(logger, f"search {request.repository!r} mode={self.mode.value}"):
            return await self._run(session, request)

    async def _run(self, session: Session, request: SearchRequest) -> SearchResult:
        attempts = 0
        index_calls = 0
        index_pending = False
        state = SearchState.SEARCHING
        path, body = self._search_call(request)

        while True:
            # SEARCHING
            attempts += 1
            logger.debug("%s attempt %d/%d", state.value, attempts, self.max_attempts)
            result = await self.client.call(session, "POST", path, json=body)

            state = SearchState.CLASSIFYING
            outcome = classify_search_result(result)
            logger.debug("%s -> %s", state.value, outcome.kind.value)

            if outcome.kind is SearchKind.AUTH_FAILURE:
                return SearchResult(
                    ResultStatus.AUTH_REQUIRED,
                    message=outcome.message,
                    attempts=attempts,
                    index_calls=index_calls,
                )
            if outcome.kind is SearchKind.SUCCESS:
                logger.info("Search in %s succeeded after %d attempt(s)", request.repository, attempts)
                return SearchResult(
                    ResultStatus.FOUND,
                    payload=outcome.payload,
                    attempts=attempts,
                    index_calls=index_calls,
                )
            if outcome.kind is SearchKind.ERROR:
                return SearchResult(
                    ResultStatus.ERROR,
                    message=f"Search failed: {outcome.message}",
                    attempts=attempts,
                    index_calls=index_calls,
                )

            # NOT_INDEXED
            if not index_pending:
                state = SearchState.INDEXING
                index = await trigger_index(self.client, session, request.index_target, request.branch)
                index_calls += 1
                if not index.pending:
                    return SearchResult(
                        ResultStatus.INDEX_FAILED,
                        message=self._index_failed_message(index),
                        attempts=attempts,
                        index_calls=index_calls,
                    )
                index_pending = True

                if self.mode is RetryMode.SINGLE_SHOT:
                    return SearchResult(
                        ResultStatus.INDEXING_STARTED,
                        payload=index.payload,
                        message=(
                            f"Repository {request.repository} is not indexed yet. "
                            f"Indexing of {index.repo_url} (branch {index.branch}) has started; "
                            "please try again in a few minutes."
                        ),
                        attempts=attempts,
                        index_calls=index_calls,
                    )

            if attempts >= self.max_attempts:
                logger.warning(
                    "Giving up on %s after %d attempts: %s",
                    request.repository,
                    attempts,
                    outcome.message,
                )
                return SearchResult(
                    ResultStatus.NOT_FOUND,
                    message=(
                        f"Repository {request.repository} was not found or not indexed "
                        f"after multiple attempts ({attempts}). Last error: {outcome.message}"
                    ),
                    attempts=attempts,
                    index_calls=index_calls,
                )

            state = SearchState.WAITING
            logger.info(
                "Repository %s not indexed yet, retrying in %.1fs (%d/%d)",
                request.repository,
                self.retry_delay,
                attempts,
                self.max_attempts,
            )
            await self.sleep(self.retry_delay)
            state = SearchState.SEARCHING

    @staticmethod
    def _index_failed_message(index: IndexOutcome) -> str:
        return f"Failed to index repository {index.repo_url}: {index.message}"
