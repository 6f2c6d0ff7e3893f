import json

import pytest

from search_gateway_mcp.chat import NO_ANSWER_MESSAGE, NO_REPOSITORY_MESSAGE, parse_command
from search_gateway_mcp.config import Config
from search_gateway_mcp.credentials import Session
from search_gateway_mcp.tools import Gateway, IndexRepositoryParams, VectorSearchParams, list_tool_definitions

from conftest import BACKEND_URL, LOGIN_URL

HITS = {"success": True, "data": [{"file": "auth/flow.py", "score": 0.91}]}


@pytest.fixture
def gateway(cfg, client, sleep):
    return Gateway(cfg, client, sleep=sleep)


def text_of(envelope):
    return envelope["content"][0]["text"]


def test_tool_definitions():
    tools = {t.name: t for t in list_tool_definitions()}

    assert set(tools) == {"chat", "vectorSearch", "vectorSearchWithSummary", "indexRepository", "repositories", "profile"}
    assert set(tools["vectorSearch"].inputSchema["required"]) == {"query", "repository"}
    assert "repoUrl" in tools["vectorSearch"].inputSchema["properties"]
    assert tools["indexRepository"].inputSchema["required"] == ["repoUrl"]
    assert tools["chat"].inputSchema["required"] == ["message"]


def test_params_accept_field_names_and_aliases():
    assert IndexRepositoryParams.model_config["populate_by_name"] is True
    assert IndexRepositoryParams.model_validate({"repo_url": "octo/widgets"}).repo_url == "octo/widgets"
    assert VectorSearchParams.model_validate({"query": "q", "repository": "r", "repoUrl": "u"}).repo_url == "u"


def test_parse_command():
    assert parse_command("/set-token abc") == ("/set-token", "abc")
    assert parse_command("  /index-repo octo/widgets dev ") == ("/index-repo", "octo/widgets dev")
    assert parse_command("how does /set-token work?") is None
    assert parse_command("/set-tokenabc") is None
    assert parse_command("/set-token\tabc") == ("/set-token", "abc")
    assert parse_command("/set-token") == ("/set-token", "")


@pytest.mark.anyio
async def test_vector_search_without_token(gateway, backend):
    envelope = await gateway.invoke(Session(), "vectorSearch", {"query": "auth flow", "repository": "octo/widgets"})

    assert envelope["isError"] is True
    assert LOGIN_URL in text_of(envelope)
    assert backend.requests == []


@pytest.mark.anyio
async def test_vector_search_returns_payload_unchanged(gateway, backend):
    backend.add("POST", "/search", (200, HITS))

    envelope = await gateway.invoke(Session("t"), "vectorSearch", {"query": "auth flow", "repository": "octo/widgets"})

    assert "isError" not in envelope
    assert envelope["content"][0]["type"] == "text"
    assert json.loads(text_of(envelope)) == HITS
    assert json.loads(backend.requests[0].content)["limit"] == 5


@pytest.mark.anyio
async def test_vector_search_starts_indexing(gateway, backend, sleep):
    backend.add("POST", "/search", (404, {"message": "not found"}))
    backend.add("POST", "/index", (202, {"status": "queued"}))

    envelope = await gateway.invoke(
        Session("t"),
        "vectorSearch",
        {"query": "x", "repository": "octo/widgets", "repoUrl": "https://github.com/octo/widgets", "branch": "dev"},
    )

    body = json.loads(text_of(envelope))
    assert body["status"] == "indexing_started"
    assert "isError" not in envelope
    assert json.loads(backend.calls("/index")[0].content)["branch"] == "dev"
    assert sleep.calls == []


@pytest.mark.anyio
async def test_search_with_summary_polls(gateway, backend, sleep):
    backend.add("POST", "/search/summary", (404, {"message": "not found"}), (200, {"summary": "done"}))
    backend.add("POST", "/index", (202, {}))

    envelope = await gateway.invoke(Session("t"), "vectorSearchWithSummary", {"query": "x", "repository": "octo/widgets"})

    assert json.loads(text_of(envelope)) == {"summary": "done"}
    assert sleep.calls == [10.0]


@pytest.mark.anyio
async def test_index_repository(gateway, backend):
    backend.add("POST", "/index", (202, {"status": "queued", "job": 1}))

    envelope = await gateway.invoke(Session("t"), "indexRepository", {"repoUrl": "octo/widgets"})

    assert json.loads(text_of(envelope)) == {"status": "queued", "job": 1}
    assert json.loads(backend.requests[0].content)["repo_url"] == "https://github.com/octo/widgets"


@pytest.mark.anyio
async def test_index_repository_failure(gateway, backend):
    backend.add("POST", "/index", (200, {"status": "error", "message": "clone failed"}))

    envelope = await gateway.invoke(Session("t"), "indexRepository", {"repoUrl": "octo/widgets"})

    assert envelope["isError"] is True
    assert "clone failed" in text_of(envelope)


@pytest.mark.anyio
async def test_profile_uses_session_token(gateway, backend):
    backend.add("GET", "/profile", (200, {"login": "octo"}))

    envelope = await gateway.invoke(Session("t"), "profile", {})

    assert json.loads(text_of(envelope)) == {"login": "octo"}
    assert backend.requests[0].headers["Authorization"] == "Bearer t"


@pytest.mark.anyio
async def test_repositories_anonymous_mode(make_client, backend, sleep):
    config = Config(backend_url=BACKEND_URL, anonymous_read_tools=True, _env_file=None)
    gateway = Gateway(config, make_client(config), sleep=sleep)
    backend.add("GET", "/repositories", (200, ["octo/widgets"]))

    envelope = await gateway.invoke(Session(), "repositories", {})

    assert json.loads(text_of(envelope)) == ["octo/widgets"]
    assert "Authorization" not in backend.requests[0].headers


@pytest.mark.anyio
async def test_unknown_tool(gateway):
    envelope = await gateway.invoke(Session("t"), "deleteEverything", {})

    assert envelope["isError"] is True
    assert "Unknown tool" in text_of(envelope)


@pytest.mark.anyio
@pytest.mark.parametrize(
    "name,arguments",
    [
        ("vectorSearch", {"repository": "octo/widgets"}),
        ("vectorSearch", {"query": "x", "repository": "octo/widgets", "limit": 0}),
        ("indexRepository", {}),
        ("chat", {"message": ""}),
    ],
)
async def test_invalid_parameters(gateway, backend, name, arguments):
    envelope = await gateway.invoke(Session("t"), name, arguments)

    assert envelope["isError"] is True
    assert "Invalid parameters" in text_of(envelope)
    assert backend.requests == []


# chat

@pytest.mark.anyio
async def test_chat_set_token(gateway, backend):
    session = Session()

    envelope = await gateway.invoke(session, "chat", {"message": "/set-token abc123"})

    assert session.token == "abc123"
    assert "isError" not in envelope
    assert backend.requests == []


@pytest.mark.anyio
async def test_chat_set_token_after_tab(gateway, backend):
    session = Session()

    envelope = await gateway.invoke(session, "chat", {"message": "/set-token\tsecret-abc", "repository": "octo/widgets"})

    assert session.token == "secret-abc"
    assert "isError" not in envelope
    assert backend.requests == []


@pytest.mark.anyio
async def test_chat_set_token_needs_value(gateway):
    session = Session()

    envelope = await gateway.invoke(session, "chat", {"message": "/set-token"})

    assert envelope["isError"] is True
    assert not session.has_token()


@pytest.mark.anyio
async def test_chat_index_repo(gateway, backend):
    backend.add("POST", "/index", (202, {}))

    envelope = await gateway.invoke(Session("t"), "chat", {"message": "/index-repo octo/widgets dev"})

    body = json.loads(text_of(envelope))
    assert "has started" in body["message"]
    assert json.loads(backend.requests[0].content) == {"repo_url": "https://github.com/octo/widgets", "branch": "dev"}


@pytest.mark.anyio
async def test_chat_without_repository(gateway, backend):
    envelope = await gateway.invoke(Session("t"), "chat", {"message": "where is auth?"})

    assert json.loads(text_of(envelope))["message"] == NO_REPOSITORY_MESSAGE
    assert backend.requests == []


@pytest.mark.anyio
async def test_chat_backend_unavailable(gateway, backend):
    backend.add("GET", "/health", (503, {"success": False}))

    envelope = await gateway.invoke(Session("t"), "chat", {"message": "where is auth?", "repository": "octo/widgets"})

    body = json.loads(text_of(envelope))
    assert body["error"] == "backend_unavailable"
    assert envelope["isError"] is True
    assert backend.calls("/search") == []


@pytest.mark.anyio
async def test_chat_with_results(gateway, backend):
    backend.add("GET", "/health", (200, {"success": True}))
    backend.add("POST", "/search", (200, HITS))

    envelope = await gateway.invoke(Session("t"), "chat", {"message": "where is auth?", "repository": "octo/widgets"})

    body = json.loads(text_of(envelope))
    assert body["codeContext"] == HITS["data"]
    assert body["repository"] == "octo/widgets"
    assert "where is auth?" in body["message"]


@pytest.mark.anyio
async def test_chat_with_no_results(gateway, backend):
    backend.add("GET", "/health", (200, {"success": True}))
    backend.add("POST", "/search", (200, {"success": True, "data": []}))

    envelope = await gateway.invoke(Session("t"), "chat", {"message": "where is auth?", "repository": "octo/widgets"})

    body = json.loads(text_of(envelope))
    assert body["message"] == NO_ANSWER_MESSAGE
    assert body["codeContext"] == []
    assert "isError" not in envelope
    assert backend.calls("/index") == []


@pytest.mark.anyio
async def test_chat_without_token(gateway, backend):
    backend.add("GET", "/health", (200, {"success": True}))

    envelope = await gateway.invoke(Session(), "chat", {"message": "where is auth?", "repository": "octo/widgets"})

    body = json.loads(text_of(envelope))
    assert LOGIN_URL in body["message"]
    assert body["error"] == "auth_required"
    assert backend.calls("/search") == []
