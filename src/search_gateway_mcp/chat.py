from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .backend import BackendClient
from .credentials import Session
from .indexer import IndexStatus, trigger_index
from .search import ResultStatus, SearchOrchestrator, SearchRequest
from .utils import utc_timestamp

logger = logging.getLogger(__name__)

SET_TOKEN_COMMAND = "/set-token"
INDEX_REPO_COMMAND = "/index-repo"

NO_ANSWER_MESSAGE = (
    "Sorry, I couldn't find a clear answer to your question in the repository "
    "documentation or code. Please try rephrasing your question or provide more details."
)
BACKEND_UNAVAILABLE_MESSAGE = (
    "The backend server is currently unavailable. "
    "Please ensure it is running and accessible."
)
NO_REPOSITORY_MESSAGE = "Please specify a repository (owner/name) to search."


def parse_command(message: str) -> Optional[Tuple[str, str]]:
    """Split a chat command into (command, argument); None for plain messages."""
    parts = message.split(None, 1)
    if parts and parts[0] in (SET_TOKEN_COMMAND, INDEX_REPO_COMMAND):
        return parts[0], parts[1].strip() if len(parts) > 1 else ""
    return None


def extract_results(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if not payload.get("success", True):
            return []
        data = payload.get("data")
        if isinstance(data, list):
            return data
        if data:
            return [data]
    return []


def chat_response(message: str, repository: str = "", code_context: List[Any] | None = None, **extra) -> Dict[str, Any]:
    response = {
        "message": message,
        "repository": repository,
        "codeContext": code_context or [],
        "timestamp": utc_timestamp(),
    }
    response.update(extra)
    return response


async def run_command(
    client: BackendClient, session: Session, command: str, argument: str
) -> Tuple[Dict[str, Any], bool]:
    if command == SET_TOKEN_COMMAND:
        if not argument:
            return chat_response(f"Usage: {SET_TOKEN_COMMAND} <token>"), True
        session.set_token(argument)
        logger.info("Backend token set for session")
        return chat_response("Backend token saved for this session."), False

    parts = argument.split()
    if not parts:
        return chat_response(f"Usage: {INDEX_REPO_COMMAND} <owner/name|url> [branch]"), True
    repository = parts[0]
    branch = parts[1] if len(parts) > 1 else None

    outcome = await trigger_index(client, session, repository, branch)
    if outcome.status is IndexStatus.ACCEPTED:
        text = f"Indexing of {outcome.repo_url} (branch {outcome.branch}) has started."
    elif outcome.status is IndexStatus.ALREADY_RUNNING:
        text = f"Indexing of {outcome.repo_url} (branch {outcome.branch}) is already in progress."
    elif outcome.status is IndexStatus.AUTH_FAILURE:
        text = outcome.message
    else:
        text = f"Failed to index repository {outcome.repo_url}: {outcome.message}"
    return chat_response(text, repository=repository), not outcome.pending


async def process_chat(
    client: BackendClient,
    orchestrator: SearchOrchestrator,
    session: Session,
    message: str,
    repository: str | None = None,
    context: Any = None,
) -> Tuple[Dict[str, Any], bool]:
    """Answer a chat message; returns the chat response and its error flag."""
    command = parse_command(message)
    if command is not None:
        return await run_command(client, session, *command)

    logger.debug("Processing chat for repo %r (context: %r)", repository, context)
    if not repository:
        return chat_response(NO_REPOSITORY_MESSAGE), False

    health = await client.health()
    if not health.ok:
        logger.error("Backend is not available: %s", health.message)
        return (
            chat_response(
                BACKEND_UNAVAILABLE_MESSAGE,
                repository=repository,
                error="backend_unavailable",
            ),
            True,
        )

    result = await orchestrator.run(
        session,
        SearchRequest(
            query=message,
            repository=repository,
            limit=client.cfg.default_limit,
            branch=client.cfg.default_branch,
        ),
    )

    if result.status is ResultStatus.FOUND:
        results = extract_results(result.payload)
        if not results:
            return chat_response(NO_ANSWER_MESSAGE, repository=repository), False
        return (
            chat_response(
                f'I processed your message: "{message}"',
                repository=repository,
                code_context=results,
            ),
            False,
        )

    if result.status is ResultStatus.INDEXING_STARTED:
        return chat_response(result.message, repository=repository), False
    return chat_response(result.message, repository=repository, error=result.status.value), True
