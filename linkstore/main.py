"""
LinkStore - Main entry point.

This module serves the LinkStore HTTP surface:
- Loads configuration from the environment
- Configures logging
- Runs the FastAPI application under uvicorn

Usage:
    python -m linkstore.main

Configuration is entirely via environment variables.
See config.py and api/settings.py for all available settings.

Invariants:
    - Logging is configured before any component is created
    - The persistence service is opened once, inside the app lifespan
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import ApiSettings, create_app
from .config import LinkStoreConfig

logger = logging.getLogger(__name__)


def setup_logging(config: LinkStoreConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: LinkStore configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    if config.engine.debug:
        logging.getLogger("linkstore").setLevel(logging.DEBUG)

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = LinkStoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    settings = ApiSettings()
    app = create_app(config, settings)
    logger.info(f"Serving LinkStore on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
