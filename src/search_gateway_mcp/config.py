from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    # Backend
    backend_url: str = Field(
        default="http://localhost:8081",
        description="Base URL of the search/indexing backend",
    )
    mcp_secret_token: Optional[str] = Field(
        default=None,
        description="Shared secret for POST /mcp, also sent to the backend as X-MCP-Token",
    )
    request_timeout: float = 30.0
    legacy_routes: bool = False  # /vector-search + /index-repository
    anonymous_read_tools: bool = False

    # HTTP bridge
    host: str = "0.0.0.0"
    port: int = 3000
    serve_http: bool = False

    # Repositories
    repo_host: str = "https://github.com/"
    default_branch: str = "main"
    default_limit: int = 5

    # Recovery
    max_attempts: int = 6
    retry_delay: float = 10.0  # seconds between polling attempts

    # Startup probe
    startup_retries: int = 3
    startup_retry_delay: float = 5.0

    @property
    def login_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/auth/login"

    @property
    def search_path(self) -> str:
        return "/vector-search" if self.legacy_routes else "/search"

    @property
    def index_path(self) -> str:
        return "/index-repository" if self.legacy_routes else "/index"

    class Config:
        env_file = ".env"
