"""Tool declarations and dispatch.

The transports hand every tool call to :meth:`Gateway.invoke` and get back
the MCP envelope ``{"content": [{"type": "text", "text": ...}], "isError"?}``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type

import anyio
from mcp.types import Tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .backend import BackendClient, CallResult
from .chat import process_chat
from .config import Config
from .credentials import Session
from .indexer import IndexOutcome, IndexStatus, trigger_index
from .search import RetryMode, SearchOrchestrator, SearchRequest, SearchResult, ResultStatus, Sleep
from .utils import to_json

logger = logging.getLogger(__name__)


class ChatParams(BaseModel):
    message: str = Field(..., min_length=1, description="The user message to process")
    repository: Optional[str] = Field(None, description="The repository (owner/name) to reference")
    context: Optional[Any] = Field(None, description="Additional context for the chat")


class VectorSearchParams(BaseModel):
    query: str = Field(..., min_length=1, description="The search query")
    repository: str = Field(..., min_length=1, description="The repository (owner/name) to search in")
    limit: Optional[int] = Field(None, gt=0, description="Maximum number of results to return")
    repo_url: Optional[str] = Field(None, alias="repoUrl", description="The repository URL to index if needed")
    branch: Optional[str] = Field(None, description="The branch to index (default: main)")

    model_config = ConfigDict(populate_by_name=True)


class VectorSearchWithSummaryParams(BaseModel):
    query: str = Field(..., min_length=1, description="The search query")
    repository: str = Field(..., min_length=1, description="The repository (owner/name) to search in")
    limit: Optional[int] = Field(None, gt=0, description="Maximum number of results to return")
    branch: Optional[str] = Field(None, description="The branch to search (default: main)")


class IndexRepositoryParams(BaseModel):
    repo_url: str = Field(..., alias="repoUrl", min_length=1, description="The repository URL (or owner/name) to index")
    branch: Optional[str] = Field(None, description="The branch to index (default: main)")

    model_config = ConfigDict(populate_by_name=True)


class NoParams(BaseModel):
    pass


TOOL_PARAMS: Dict[str, Type[BaseModel]] = {
    "chat": ChatParams,
    "vectorSearch": VectorSearchParams,
    "vectorSearchWithSummary": VectorSearchWithSummaryParams,
    "indexRepository": IndexRepositoryParams,
    "repositories": NoParams,
    "profile": NoParams,
}

TOOL_DESCRIPTIONS = {
    "chat": (
        "Process a chat message with repository context. "
        "Send '/set-token <token>' to authenticate or '/index-repo <repo> [branch]' to index."
    ),
    "vectorSearch": "Search for code in a repository; starts indexing when the repository is not indexed yet",
    "vectorSearchWithSummary": "Search a repository and summarize the results, waiting for indexing when needed",
    "indexRepository": "Index a repository for search",
    "repositories": "List repositories known to the backend",
    "profile": "Show the profile of the authenticated backend user",
}


def list_tool_definitions() -> List[Tool]:
    return [
        Tool(
            name=name,
            description=TOOL_DESCRIPTIONS[name],
            inputSchema=params.model_json_schema(by_alias=True),
        )
        for name, params in TOOL_PARAMS.items()
    ]


def text_envelope(text: str, is_error: bool = False) -> Dict[str, Any]:
    envelope: Dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        envelope["isError"] = True
    return envelope


def error_envelope(message: str) -> Dict[str, Any]:
    return text_envelope(to_json({"status": "error", "message": message}), is_error=True)


def render_search_result(result: SearchResult) -> Dict[str, Any]:
    if result.status is ResultStatus.FOUND:
        return text_envelope(to_json(result.payload))
    if result.status is ResultStatus.AUTH_REQUIRED:
        return text_envelope(result.message, is_error=True)
    return text_envelope(
        to_json({"status": result.status.value, "message": result.message}),
        is_error=result.is_error,
    )


def render_index_outcome(outcome: IndexOutcome) -> Dict[str, Any]:
    if outcome.status is IndexStatus.AUTH_FAILURE:
        return text_envelope(outcome.message, is_error=True)
    if outcome.status is IndexStatus.FAILED:
        return error_envelope(f"Repository indexing failed: {outcome.message}")
    if outcome.payload is not None:
        return text_envelope(to_json(outcome.payload))
    return text_envelope(
        to_json({"status": outcome.status.value, "repo_url": outcome.repo_url, "branch": outcome.branch})
    )


def render_call_result(result: CallResult) -> Dict[str, Any]:
    if result.ok:
        return text_envelope(to_json(result.payload))
    if result.needs_auth:
        return text_envelope(result.message, is_error=True)
    return error_envelope(result.message)


class Gateway:
    """Dispatches tool calls to the backend on behalf of a :class:`Session`."""

    def __init__(self, cfg: Config, client: BackendClient | None = None, sleep: Sleep = anyio.sleep):
        self.cfg = cfg
        self.client = client or BackendClient(cfg)
        self.quick_search = SearchOrchestrator(self.client, RetryMode.SINGLE_SHOT, sleep=sleep)
        self.summary_search = SearchOrchestrator(self.client, RetryMode.POLLING, summary=True, sleep=sleep)
        self._handlers = {
            "chat": self._chat,
            "vectorSearch": self._vector_search,
            "vectorSearchWithSummary": self._vector_search_with_summary,
            "indexRepository": self._index_repository,
            "repositories": self._repositories,
            "profile": self._profile,
        }

    async def invoke(self, session: Session, name: str, arguments: Dict[str, Any] | None) -> Dict[str, Any]:
        handler = self._handlers.get(name)
        if handler is None:
            return error_envelope(f"Unknown tool: {name}")

        try:
            params = TOOL_PARAMS[name].model_validate(arguments or {})
        except ValidationError as e:
            return error_envelope(f"Invalid parameters for {name}: {e}")

        logger.info("Tool call: %s", name)
        try:
            return await handler(session, params)
        except Exception as e:
            # One failed tool call must not take the server down.
            logger.exception("Tool %s failed", name)
            return error_envelope(f"Error running {name}: {e}")

    async def _chat(self, session: Session, params: ChatParams) -> Dict[str, Any]:
        response, is_error = await process_chat(
            self.client,
            self.quick_search,
            session,
            params.message,
            params.repository,
            params.context,
        )
        return text_envelope(to_json(response), is_error=is_error)

    async def _vector_search(self, session: Session, params: VectorSearchParams) -> Dict[str, Any]:
        request = SearchRequest(
            query=params.query,
            repository=params.repository,
            limit=params.limit or self.cfg.default_limit,
            branch=params.branch or self.cfg.default_branch,
            repo_url=params.repo_url,
        )
        return render_search_result(await self.quick_search.run(session, request))

    async def _vector_search_with_summary(
        self, session: Session, params: VectorSearchWithSummaryParams
    ) -> Dict[str, Any]:
        request = SearchRequest(
            query=params.query,
            repository=params.repository,
            limit=params.limit or self.cfg.default_limit,
            branch=params.branch or self.cfg.default_branch,
        )
        return render_search_result(await self.summary_search.run(session, request))

    async def _index_repository(self, session: Session, params: IndexRepositoryParams) -> Dict[str, Any]:
        outcome = await trigger_index(self.client, session, params.repo_url, params.branch)
        return render_index_outcome(outcome)

    async def _read(self, session: Session, path: str) -> Dict[str, Any]:
        if self.cfg.anonymous_read_tools:
            result = await self.client.call_anonymous("GET", path)
        else:
            result = await self.client.call(session, "GET", path)
        return render_call_result(result)

    async def _repositories(self, session: Session, params: NoParams) -> Dict[str, Any]:
        return await self._read(session, "/repositories")

    async def _profile(self, session: Session, params: NoParams) -> Dict[str, Any]:
        return await self._read(session, "/profile")

    async def aclose(self) -> None:
        await self.client.aclose()
