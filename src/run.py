#!/usr/bin/env python3
"""
IMPRO - Improv Match Scoreboard

Main entry point for running the scoreboard server.
Serves the Socket.IO sync channel and the JSON API.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add impro package to path
sys.path.insert(0, str(Path(__file__).parent))

from impro import __version__
from impro.config import load_config, set_config
from impro.web.app import create_app, socketio


def setup_logging(debug: bool = False):
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="IMPRO - Improv Match Scoreboard server"
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to config file",
        default=None
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--host",
        help="Web server host (default: 0.0.0.0)",
        default=None
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Web server port (default: 8080)",
        default=None
    )
    parser.add_argument(
        "--db",
        help="SQLite database path (default: platform data directory)",
        default=None
    )
    parser.add_argument(
        "--no-storage",
        action="store_true",
        help="Keep room state in memory only"
    )
    parser.add_argument(
        "--room",
        help="Room used by clients that don't pick one",
        default=None
    )

    args = parser.parse_args()

    # Load configuration
    config = load_config(args.config)

    # Apply command line overrides
    if args.debug:
        config.debug = True
    if args.host:
        config.web.host = args.host
    if args.port:
        config.web.port = args.port
    if args.db:
        config.storage.db_path = args.db
    if args.no_storage:
        config.storage.enabled = False
    if args.room:
        config.default_room = args.room

    set_config(config)

    # Setup logging
    setup_logging(config.debug)
    logger = logging.getLogger("impro")

    logger.info("=" * 50)
    logger.info(f"IMPRO - Improv Match Scoreboard v{__version__}")
    logger.info("=" * 50)

    app = create_app(config)

    if not config.storage.enabled:
        logger.info("Storage disabled, room state lives in memory")

    logger.info(f"Starting web server on http://{config.web.host}:{config.web.port}")
    logger.info("Press Ctrl+C to stop")

    try:
        socketio.run(
            app,
            host=config.web.host,
            port=config.web.port,
            debug=False,  # Disable Flask debug to prevent double-start
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")

    logger.info("IMPRO stopped")


if __name__ == "__main__":
    main()
