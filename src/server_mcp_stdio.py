"""MCP stdio server exposing the search gateway tools.

Tool calls are forwarded to the backend through one process-local session;
set its token with the chat command ``/set-token <token>``.
Requires the `mcp` Python package. Adjust imports if the API changes.
"""
import json
import logging

import anyio

try:
    from mcp.server import Server, NotificationOptions
    from mcp.types import Tool, TextContent
    from mcp.server.stdio import stdio_server
    from mcp.server.models import InitializationOptions
except Exception as e:
    raise SystemExit(
        "The 'mcp' package is required. Try: 'pip install mcp' or pin a version matching your host.\n"
        f"Import error: {e}"
    )

from search_gateway_mcp.backend import probe_backend
from search_gateway_mcp.config import Config
from search_gateway_mcp.credentials import Session
from search_gateway_mcp.logging_utils import mask_secret, setup_logging
from search_gateway_mcp.tools import Gateway, list_tool_definitions

setup_logging()

logger = logging.getLogger("search_gateway_mcp.stdio")

SERVER_NAME = "search-gateway-mcp"
SERVER_VERSION = "1.0.0"


class ToolInvocationError(Exception):
    """Raised so the MCP layer reports the tool result with isError set."""


def build_server(gateway: Gateway, session: Session) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return list_tool_definitions()

    @server.call_tool()
    async def call_tool(name: str, arguments: dict):
        envelope = await gateway.invoke(session, name, arguments)
        text = "\n".join(item["text"] for item in envelope["content"])
        if envelope.get("isError"):
            raise ToolInvocationError(text)
        return [TextContent(type="text", text=text)]

    return server


async def run_stdio(server: Server):
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream=read_stream,
            write_stream=write_stream,
            initialization_options=InitializationOptions(
                server_name=SERVER_NAME,
                server_version=SERVER_VERSION,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


async def run_http(cfg: Config):
    import uvicorn

    from search_gateway_mcp.http_bridge import create_app

    config = uvicorn.Config(
        create_app(cfg),
        host=cfg.host,
        port=cfg.port,
        log_config=None,
        access_log=False,
    )
    try:
        await uvicorn.Server(config).serve()
    except (OSError, SystemExit) as e:
        # uvicorn exits on bind failure; stdio keeps serving without the bridge
        logger.error("HTTP bridge on %s:%s stopped: %r", cfg.host, cfg.port, e)


async def main():
    cfg = Config()
    logger.info(
        "Config: %s",
        json.dumps(
            {
                "backend_url": cfg.backend_url,
                "mcp_secret_token": mask_secret(cfg.mcp_secret_token),
                "port": cfg.port,
                "serve_http": cfg.serve_http,
            }
        ),
    )

    gateway = Gateway(cfg)
    session = Session()
    server = build_server(gateway, session)

    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(probe_backend, gateway.client, cfg.startup_retries, cfg.startup_retry_delay)
            if cfg.serve_http:
                tg.start_soon(run_http, cfg)
            await run_stdio(server)
            # stdin closed: stop the probe and the HTTP bridge too
            tg.cancel_scope.cancel()
    finally:
        await gateway.aclose()


def run():
    anyio.run(main)


if __name__ == "__main__":
    run()
