"""authprobe entry point.

Starts the diagnostics API with uvicorn. Command-line flags override the
``AUTHPROBE_*`` environment settings for this run.
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path

from authprobe.config import Settings, get_settings
from authprobe.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("authprobe")
    except PackageNotFoundError:
        from authprobe import __version__

        return __version__


def run_server(settings: Settings, dev: bool = False) -> None:
    """Run the API server in the foreground."""
    import uvicorn

    from authprobe.api.app import create_app

    logger.info("Provider base URL: %s", settings.base_url)
    logger.info("HTTP history: %s", settings.resolved_database_path())
    if settings.session_secret == Settings.model_fields["session_secret"].default:
        logger.warning("Using the default session secret; set AUTHPROBE_SESSION_SECRET")

    print(f"\n  Visit http://{settings.host}:{settings.port}/docs\n")
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="debug" if dev else settings.log_level.lower(),
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="authprobe - exercise an OAuth2/OIDC provider and record every HTTP exchange",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  authprobe                                   Start on 127.0.0.1:8080
  authprobe --base-url https://idp.example    Point at another provider
  authprobe --port 9000 --db ./history.db     Custom port and history file
""",
    )
    parser.add_argument("--host", type=str, default=None, help="Host to bind (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port (default: 8080)")
    parser.add_argument("--base-url", type=str, default=None, help="Identity provider base URL")
    parser.add_argument("--db", type=str, default=None, help="SQLite file for the HTTP history")
    parser.add_argument("--dev", action="store_true", help="Verbose logging")
    parser.add_argument(
        "--version", "-v", action="version", version=f"%(prog)s {_version()}"
    )
    args = parser.parse_args()

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.db:
        overrides["database_path"] = Path(args.db)
    settings = get_settings().model_copy(update=overrides)

    setup_logging(level="DEBUG" if args.dev else settings.log_level)

    try:
        run_server(settings, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
