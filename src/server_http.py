"""Run the HTTP bridge on its own (``POST /mcp`` plus status endpoints)."""
import logging

import uvicorn

from search_gateway_mcp.config import Config
from search_gateway_mcp.http_bridge import create_app
from search_gateway_mcp.logging_utils import mask_secret, setup_logging

setup_logging()

logger = logging.getLogger("search_gateway_mcp.http")


def main():
    cfg = Config()
    logger.info(
        "HTTP bridge on %s:%s -> %s (shared secret: %s)",
        cfg.host,
        cfg.port,
        cfg.backend_url,
        mask_secret(cfg.mcp_secret_token),
    )
    uvicorn.run(create_app(cfg), host=cfg.host, port=cfg.port, log_config=None)


if __name__ == "__main__":
    main()
