#!/usr/bin/env python
"""Main entry point for the readlist-vault MCP server."""
import argparse
import atexit
import logging
import os
import sys
from pathlib import Path

from readlist_vault.config import config
from readlist_vault.models.db_models import init_db
from readlist_vault.observability import configure_logging, metrics
from readlist_vault.server.mcp_server import ReadlistMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Reading list vault sync MCP server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("READLIST_DATABASE_PATH")
    )
    parser.add_argument(
        "--vault-path",
        help="Root directory of the Markdown vault",
        type=str,
        default=os.environ.get("READLIST_VAULT_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("READLIST_LOG_LEVEL", "INFO")
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.vault_path:
        config.vault_path = Path(args.vault_path)


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    if metrics.save_metrics():
        logging.getLogger(__name__).info("Metrics saved to disk on shutdown")


def main():
    """Run the readlist-vault MCP server."""
    args = parse_args()
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(level=log_level, console=True)
    except OSError as e:
        # Fall back to console logging if the log directory is not writable
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    atexit.register(_save_metrics_on_exit)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        logger.info("Starting readlist-vault MCP server")
        server = ReadlistMcpServer(engine=engine)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
