"""
Main entry point: configures logging and tracing, then serves the admin API.
"""

import argparse
import sys

import uvicorn
from opentelemetry import metrics

from . import __version__
from .agents.protocols import list_protocols
from .config.settings import get_settings
from .observability.logging import get_logger, setup_logging
from .observability.metrics import setup_metrics
from .observability.tracing import setup_tracing

logger = get_logger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Forge agent orchestrator server")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--workers", type=int, default=None, help="Number of workers")
    parser.add_argument("--list-protocols", action="store_true", help="Print agent protocols and exit")
    parser.add_argument("--version", action="store_true", help="Show version")

    if argv is None:
        argv = []
    args = parser.parse_args(argv)

    if args.version:
        print(f"Forge v{__version__}")
        return

    if args.list_protocols:
        for protocol in list_protocols():
            low, high = protocol.estimated_cost_cents
            print(f"{protocol.key.value:<24} {protocol.model:<32} {low}-{high}c  {protocol.name}")
        return

    settings = get_settings()
    setup_logging(settings.observability.log_level)

    tracing_manager = None
    if settings.observability.enable_tracing:
        try:
            tracing_manager = setup_tracing(
                settings.observability.service_name,
                settings.observability.service_version,
                settings.observability.otlp_endpoint,
            )
        except Exception as e:
            logger.warning("Failed to initialize tracing", error=str(e))

    observability = settings.observability
    setup_metrics(metrics.get_meter(observability.service_name, observability.service_version))

    logger.info(
        "Forge initialized",
        version=__version__,
        environment=settings.environment,
        tracing_enabled=settings.observability.enable_tracing,
    )

    reload = args.reload or settings.api.reload
    try:
        uvicorn.run(
            "forgeagent.api.server:app",
            host=args.host or settings.api.host,
            port=args.port or settings.api.port,
            reload=reload,
            workers=1 if reload else (args.workers or settings.api.workers),
        )
    finally:
        if tracing_manager:
            tracing_manager.shutdown()


def cli_main():
    try:
        main(sys.argv[1:])
        sys.exit(0)
    except KeyboardInterrupt:
        print("\nForge shutdown")
        sys.exit(0)
    except Exception as e:
        logger.error("Startup failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
