"""
Run the Openera MCP HTTP service.

Usage:
    python -m openera_mcp --config openera_mcp.config.yaml --port 8000
"""

import argparse
from typing import List, Optional

from aiohttp import web

from openera_mcp.app import OpeneraApp
from openera_mcp.config import load_config
from openera_mcp.server.api import create_app
from openera_mcp.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Openera MCP service")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML config (default: ./openera_mcp.config.yaml)",
    )
    parser.add_argument("--host", default=None, help="Host to bind (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (overrides config)")
    parser.add_argument("--log-level", default=None, help="Log level (overrides config)")
    args = parser.parse_args(argv)

    settings = load_config(args.config)
    configure_logging(
        args.log_level or settings.logging.level,
        add_file_handler=settings.logging.file_path,
    )

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    logger.info(f"Starting Openera MCP on {host}:{port}")

    app = create_app(OpeneraApp(settings=settings))
    web.run_app(app, host=host, port=port, print=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
