"""Command-line interface to start the energy assistant HTTP server.

Usage
-----
    energy-assistant --host 0.0.0.0 --port 8080
    python -m energy_assistant.server.cli --config providers.json -v

``--create-schema`` creates any missing tables before serving, which is
handy for SQLite development databases.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import os

from ..config.models import EnvSettings, load_providers_config
from ..errors import ConfigurationError
from ..observability import setup_logging
from ..providers.factory import ProviderFactory
from ..storage.engine import create_schema, make_engine
from .http import create_app

logger = logging.getLogger(__name__)


def main() -> None:
    """CLI entrypoint for running the HTTP server under uvicorn."""
    parser = argparse.ArgumentParser(description="Energy assistant HTTP server")
    parser.add_argument(
        "--config", help="Path to JSON provider config (overrides environment)"
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
        ],
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    parser.add_argument(
        "--host", default="127.0.0.1", help="HTTP bind host (default 127.0.0.1)"
    )
    parser.add_argument("--port", type=int, default=8080, help="HTTP port")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing database tables before serving",
    )
    args = parser.parse_args()

    env_level = os.environ.get("ENERGY_ASSISTANT_LOG_LEVEL", "INFO").upper()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env_level)
    # Apply early so subsequent imports use configured level
    setup_logging(effective_level)

    overrides = {"log_level": effective_level}
    if args.config:
        overrides["config_path"] = args.config
    settings = EnvSettings(**overrides)
    try:
        providers = load_providers_config(settings)
    except ConfigurationError as exc:
        parser.error(str(exc))
    if not settings.JWT_SECRET:
        parser.error("JWT_SECRET is not defined (set ENERGY_ASSISTANT_JWT_SECRET)")

    engine = make_engine(settings.DATABASE_URL, settings.DATABASE_POOL_SIZE)
    if args.create_schema:
        create_schema(engine)
        logger.info("cli.schema.created", extra={"dialect": engine.dialect.name})

    uvicorn = importlib.import_module("uvicorn")
    app = create_app(
        settings=settings,
        engine=engine,
        provider_factory=ProviderFactory(
            providers, status_timeout=settings.PROVIDER_STATUS_TIMEOUT_SECONDS
        ),
    )
    try:
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_level=effective_level.lower(),
        )
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
