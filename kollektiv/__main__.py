"""
Kollektiv API server

Usage:
    python -m kollektiv [--config PATH] [--root DIR] [--host HOST] [--port PORT]
"""

import argparse
import logging
import sys

from aiohttp import web

from .api_routes import create_app
from .config import ConfigError, configure_logging, default_config_path, load_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kollektiv", description="Serve the Kollektiv catalog API")
    parser.add_argument("--config", default=None, help=f"Config file (default: {default_config_path()})")
    parser.add_argument("--root", default=None, help="Storage root directory, overrides the config file")
    parser.add_argument("--host", default=None, help="Address to bind, overrides the config file")
    parser.add_argument("--port", type=int, default=None, help="Port to bind, overrides the config file")
    parser.add_argument("--log-level", default=None, help="Logging level, overrides the config file")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        configure_logging()
        logger.error(str(e))
        return 1

    if args.root:
        config.root_directory = args.root
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.log_level:
        config.log_level = args.log_level.upper()

    configure_logging(config.log_level)
    logger.info(f"Serving storage root {config.root_directory} on {config.host}:{config.port}")
    web.run_app(create_app(config), host=config.host, port=config.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
