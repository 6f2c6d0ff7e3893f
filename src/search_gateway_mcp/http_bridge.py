"""HTTP bridge: ``POST /mcp`` forwards ``{tool, params}`` to the backend.

Requests must carry ``Authorization: Bearer <mcp_secret_token>``. Backend
calls made here are anonymous (static ``X-MCP-Token`` header only).

``POST /rpc`` and ``POST /mcp-registration`` answer JSON-RPC 2.0 discovery
calls (server info and the tool catalogue) without authentication.
"""
from __future__ import annotations

import contextlib
import hmac
import logging
from typing import Any, Dict, Optional, Tuple

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .backend import BackendClient
from .config import Config
from .tools import list_tool_definitions
from .utils import to_full_url, utc_timestamp

logger = logging.getLogger(__name__)

SERVICE_NAME = "search-gateway-mcp"
SERVICE_VERSION = "1.0.0"

JSONRPC_METHOD_NOT_FOUND = -32601


def authorized(cfg: Config, header: Optional[str]) -> bool:
    if not cfg.mcp_secret_token or not header:
        return False
    expected = f"Bearer {cfg.mcp_secret_token}"
    # header values arrive latin-1 decoded; compare_digest rejects non-ASCII str
    return hmac.compare_digest(
        header.encode("utf-8", "surrogateescape"), expected.encode("utf-8", "surrogateescape")
    )


def map_tool_request(cfg: Config, body: Dict[str, Any]) -> Tuple[str, str, Optional[Dict[str, Any]]]:
    """Translate a bridge body into (method, path, json) for the backend."""
    tool = body.get("tool")
    params = body.get("params") or {}

    if tool == "vectorSearch":
        return "POST", cfg.search_path, {
            "query": params.get("query"),
            "repository": params.get("repository"),
            "limit": params.get("limit") or cfg.default_limit,
        }
    if tool == "vectorSearchWithSummary":
        return "POST", "/search/summary", {
            "query": params.get("query"),
            "repository": params.get("repository"),
            "limit": params.get("limit") or cfg.default_limit,
            "branch": params.get("branch") or cfg.default_branch,
        }
    if tool == "indexRepository":
        repo = params.get("repoUrl") or params.get("repository") or ""
        return "POST", cfg.index_path, {
            "repo_url": to_full_url(repo, cfg.repo_host),
            "branch": params.get("branch") or cfg.default_branch,
        }
    if tool == "repositories":
        return "GET", "/repositories", None
    if tool == "profile":
        return "GET", "/profile", None

    # Direct format: the search fields sit at the top level of the body.
    return "POST", cfg.search_path, {
        "query": body.get("query"),
        "repository": body.get("repository"),
        "branch": body.get("branch") or cfg.default_branch,
    }


def server_info() -> Dict[str, str]:
    return {"name": SERVICE_NAME, "version": SERVICE_VERSION}


def list_offerings() -> Dict[str, Any]:
    """Tool catalogue in the JSON-RPC `listOfferings` shape."""
    tools = [
        {"id": tool.name, "name": tool.name, "description": tool.description, "parameters": tool.inputSchema}
        for tool in list_tool_definitions()
    ]
    return {"tools": tools, "resources": [], "resourceTemplates": []}


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def create_app(cfg: Config | None = None, client: BackendClient | None = None) -> Starlette:
    cfg = cfg or Config()
    client = client or BackendClient(cfg)

    async def root(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "version": SERVICE_VERSION,
                "backendUrl": cfg.backend_url,
                "timestamp": utc_timestamp(),
            }
        )

    async def test(request: Request) -> JSONResponse:
        result = await client.health()
        if result.ok:
            payload = result.payload
            healthy = isinstance(payload, dict) and bool(payload.get("success"))
            backend_status = "connected" if healthy else "unhealthy"
        else:
            backend_status = f"error: {result.message}"
        return JSONResponse(
            {
                "mcp_server": "running",
                "backend": backend_status,
                "config": {
                    "port": cfg.port,
                    "backendUrl": cfg.backend_url,
                    "hasToken": bool(cfg.mcp_secret_token),
                },
            }
        )

    async def keep_alive(request: Request) -> JSONResponse:
        return JSONResponse({"alive": True, "timestamp": utc_timestamp()})

    async def mcp(request: Request) -> JSONResponse:
        if not authorized(cfg, request.headers.get("authorization")):
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        try:
            body = await request.json()
        except ValueError as e:
            return JSONResponse(
                {"error": "Invalid request body", "message": str(e), "success": False},
                status_code=400,
            )
        if not isinstance(body, dict):
            return JSONResponse(
                {"error": "Invalid request body", "message": "expected a JSON object", "success": False},
                status_code=400,
            )

        try:
            method, path, payload = map_tool_request(cfg, body)
            logger.info("Bridge %s -> %s %s", body.get("tool"), method, path)
            result = await client.call_anonymous(method, path, json=payload)
        except Exception as e:
            logger.exception("Error processing bridge request")
            return JSONResponse(
                {"error": "Internal server error", "message": str(e), "success": False},
                status_code=500,
            )

        if result.ok:
            return JSONResponse(result.payload)
        if result.status_code is not None and result.status_code >= 400:
            logger.error("Backend responded with status %s", result.status_code)
            return JSONResponse(
                {"error": "Request failed", "message": result.body or result.message, "success": False},
                status_code=result.status_code,
            )
        return JSONResponse(
            {"error": "Internal server error", "message": result.message, "success": False},
            status_code=500,
        )

    async def rpc(request: Request) -> JSONResponse:
        body = await _json_body(request)
        method = body.get("method")
        request_id = body.get("id")
        if method == "getServerInfo":
            return JSONResponse({"jsonrpc": "2.0", "result": {"serverInfo": server_info()}, "id": request_id})
        if method == "listOfferings":
            return JSONResponse({"jsonrpc": "2.0", "result": list_offerings(), "id": request_id})
        logger.warning("Unknown JSON-RPC method: %r", method)
        return JSONResponse(
            {
                "jsonrpc": "2.0",
                "error": {"code": JSONRPC_METHOD_NOT_FOUND, "message": "Method not found"},
                "id": request_id,
            }
        )

    async def registration(request: Request) -> JSONResponse:
        body = await _json_body(request)
        return JSONResponse({"jsonrpc": "2.0", "result": {"serverInfo": server_info()}, "id": body.get("id")})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        try:
            yield
        finally:
            await client.aclose()

    return Starlette(
        routes=[
            Route("/", root, methods=["GET"]),
            Route("/test", test, methods=["GET"]),
            Route("/keep-alive", keep_alive, methods=["GET"]),
            Route("/mcp", mcp, methods=["POST"]),
            Route("/rpc", rpc, methods=["POST"]),
            Route("/mcp-registration", registration, methods=["POST"]),
        ],
        lifespan=lifespan,
    )
