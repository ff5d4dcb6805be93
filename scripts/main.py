#!/usr/bin/env python3
# === MODULE PURPOSE ===
# Main entry point for the Stock Trading Simulator.
# Loads configuration, restores state and serves the JSON API with
# periodic market updates.

# === USAGE ===
# uv run python scripts/main.py
# uv run python scripts/main.py --config config/trading-config.yaml --port 8080
# uv run python scripts/main.py --no-ticker   # prices move only via POST /api/market/update

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import uvicorn

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.common.config import DEFAULT_CONFIG_PATH, Config, get_web_config, load_config
from src.web.app import create_app

logger = logging.getLogger(__name__)


def setup_logging(config: Config) -> None:
    """Configure logging based on config."""
    level = config.get_str("logging.level", "INFO")
    format_str = config.get_str(
        "logging.format",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Create logs directory if needed
    log_file = config.get_str("logging.file")
    if log_file:
        log_path = project_root / log_file
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format=format_str,
            handlers=[
                logging.StreamHandler(),
                logging.FileHandler(log_path, encoding="utf-8"),
            ],
        )
    else:
        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format=format_str,
        )


async def main(config_path: str, host: str | None, port: int | None, start_ticker: bool) -> None:
    """Main entry point."""
    config = load_config(config_path)
    setup_logging(config)

    web = get_web_config(config)
    host = host or web["host"]
    port = port or web["port"]

    logger.info("=" * 60)
    logger.info("Stock Trading Simulator")
    logger.info(f"Persistence: {config.get_str('persistence.backend')}, API: http://{host}:{port}")
    logger.info("=" * 60)

    app = create_app(config=config, start_ticker=start_ticker)
    server = uvicorn.Server(
        uvicorn.Config(app, host=host, port=port, log_level=config.get_str("logging.level", "INFO").lower())
    )

    try:
        await server.serve()
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        raise

    logger.info("Simulator terminated")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Stock Trading Simulator")
    parser.add_argument(
        "--config",
        "-c",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration file",
    )
    parser.add_argument("--host", default=None, help="Bind host (overrides web.host)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides web.port)")
    parser.add_argument(
        "--no-ticker",
        action="store_true",
        help="Disable periodic market updates",
    )
    args = parser.parse_args()

    asyncio.run(main(args.config, args.host, args.port, not args.no_ticker))
