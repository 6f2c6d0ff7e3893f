import json
from typing import Optional

import anyio
import httpx
import typer

from search_gateway_mcp.backend import BackendClient
from search_gateway_mcp.config import Config
from search_gateway_mcp.credentials import Session
from search_gateway_mcp.logging_utils import setup_logging
from search_gateway_mcp.tools import Gateway

app = typer.Typer(add_completion=False, no_args_is_help=True)

setup_logging(level="INFO")

TokenOption = typer.Option(None, envvar="BACKEND_TOKEN", help="Backend bearer token")


def _invoke(tool: str, arguments: dict, token: Optional[str]) -> dict:
    async def run():
        gateway = Gateway(Config())
        try:
            return await gateway.invoke(Session(token), tool, arguments)
        finally:
            await gateway.aclose()

    return anyio.run(run)


def _echo_envelope(envelope: dict):
    for item in envelope["content"]:
        typer.echo(item["text"])
    if envelope.get("isError"):
        raise typer.Exit(code=1)


@app.command()
def health():
    """Check that the backend answers GET /health."""
    async def run():
        client = BackendClient(Config())
        try:
            return await client.health()
        finally:
            await client.aclose()

    result = anyio.run(run)
    if not result.ok:
        typer.echo(f"Backend unreachable: {result.message}")
        raise typer.Exit(code=1)
    typer.echo(json.dumps(result.payload, ensure_ascii=False, indent=2))


@app.command()
def search(
    repository: str = typer.Option(..., help="Repository in owner/name form"),
    query: str = typer.Option(..., prompt=True),
    limit: int = typer.Option(5, min=1),
    branch: str = typer.Option("main"),
    repo_url: Optional[str] = typer.Option(None, help="Repository to index if not indexed yet"),
    summary: bool = typer.Option(False, help="Use /search/summary and wait for indexing"),
    token: Optional[str] = TokenOption,
):
    if summary:
        tool = "vectorSearchWithSummary"
        arguments = {"query": query, "repository": repository, "limit": limit, "branch": branch}
    else:
        tool = "vectorSearch"
        arguments = {"query": query, "repository": repository, "limit": limit, "branch": branch, "repoUrl": repo_url}
    _echo_envelope(_invoke(tool, arguments, token))


@app.command()
def index(
    repo_url: str = typer.Option(..., help="Repository URL or owner/name"),
    branch: str = typer.Option("main"),
    token: Optional[str] = TokenOption,
):
    _echo_envelope(_invoke("indexRepository", {"repoUrl": repo_url, "branch": branch}, token))


@app.command()
def repositories(token: Optional[str] = TokenOption):
    _echo_envelope(_invoke("repositories", {}, token))


@app.command()
def profile(token: Optional[str] = TokenOption):
    _echo_envelope(_invoke("profile", {}, token))


@app.command()
def call(
    tool: str = typer.Argument(..., help="Tool name, e.g. chat or vectorSearch"),
    params: str = typer.Option("{}", help="Tool parameters as a JSON object"),
    token: Optional[str] = TokenOption,
):
    try:
        arguments = json.loads(params)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--params is not valid JSON: {e}")
    _echo_envelope(_invoke(tool, arguments, token))


@app.command()
def probe(
    url: str = typer.Option("http://localhost:3000", help="Base URL of a running HTTP bridge"),
    secret: Optional[str] = typer.Option(None, envvar="MCP_SECRET_TOKEN", help="Shared secret for /mcp"),
):
    """Smoke-test a running HTTP bridge."""
    passed, failed, warnings = [], [], []

    with httpx.Client(base_url=url, timeout=30.0) as client:
        try:
            resp = client.get("/")
            if resp.json().get("status") == "ok":
                passed.append("Health check")
            else:
                failed.append("Health check")
        except (httpx.HTTPError, ValueError) as e:
            failed.append(f"Health check ({e})")

        try:
            resp = client.get("/test")
            passed.append("Test endpoint")
            if resp.json().get("backend", "").startswith("error"):
                warnings.append("Backend not reachable from the bridge")
        except (httpx.HTTPError, ValueError) as e:
            failed.append(f"Test endpoint ({e})")

        body = {"tool": "vectorSearch", "params": {"query": "test", "repository": "test-repo"}}
        try:
            resp = client.post("/mcp", json=body)
            if resp.status_code == 401:
                passed.append("MCP auth rejects unauthorized")
            else:
                failed.append(f"MCP auth accepted unauthorized request ({resp.status_code})")
        except httpx.HTTPError as e:
            failed.append(f"MCP auth ({e})")

        if secret:
            try:
                resp = client.post("/mcp", json=body, headers={"Authorization": f"Bearer {secret}"})
                if resp.status_code == 401:
                    failed.append("MCP auth rejects the configured secret")
                else:
                    passed.append("MCP auth accepts secret")
                    if resp.status_code >= 400:
                        warnings.append(f"Backend answered vectorSearch with {resp.status_code}")
            except httpx.HTTPError as e:
                failed.append(f"MCP authorized request ({e})")
        else:
            warnings.append("No secret given, authorized /mcp request skipped")

    for name in passed:
        typer.echo(f"PASS  {name}")
    for name in warnings:
        typer.echo(f"WARN  {name}")
    for name in failed:
        typer.echo(f"FAIL  {name}")
    typer.echo(f"\n{len(passed)} passed, {len(failed)} failed, {len(warnings)} warnings")
    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
