"""Command line entry point that serves the API with uvicorn."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import load_settings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CardVault API server")
    parser.add_argument("--host", default=None, help="Override CARDVAULT_HOST")
    parser.add_argument("--port", type=int, default=None, help="Override CARDVAULT_PORT")
    parser.add_argument("--reload", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn

    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("Starting CardVault API on %s:%s (%s store)", host, port, "postgres" if settings.database_url else "in-memory")
    uvicorn.run(
        "cardvault.backend.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
