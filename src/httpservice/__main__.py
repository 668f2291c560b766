"""
=============================================================================
COMMAND LINE
=============================================================================

    python -m httpservice                        # localhost:8080
    python -m httpservice --port 3000
    python -m httpservice --host 0.0.0.0         # containers
    python -m httpservice --tls --cert c.pem --key k.pem
    HTTP_PORT=3000 HTTP_LOG_FORMAT=json python -m httpservice

Environment variables (see ServiceConfig.from_env) are read first;
command-line flags override them. Out of the box the service answers
GET /health and replies 501 to everything else.

Exit status is 1 when the service cannot start (bad configuration,
unusable TLS material, address in use).

=============================================================================
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import ServiceConfig
from .errors import ServiceError
from .log import setup_logging
from .service import Service


logger = logging.getLogger("httpservice.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httpservice",
        description="Run an HTTP service with health checks, sessions and streaming responses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpservice                          # Run with defaults
  python -m httpservice --port 3000              # Custom port
  python -m httpservice --host 0.0.0.0           # Listen on all interfaces
  python -m httpservice --tls --cert c.pem --key k.pem
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Hostname to bind (default: localhost)")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on (default: 8080)")
    parser.add_argument("--timeout", "-t", type=float, help="Request timeout in seconds (default: 30)")
    parser.add_argument("--workers", "-w", type=int, help="Maximum worker threads (default: 16)")

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--tls", action="store_true", default=None, help="Serve HTTPS only")
    parser.add_argument("--cert", help="PEM certificate chain")
    parser.add_argument("--key", help="PEM private key")

    # ─────────────────────────────────────────────────────────────────────
    # BUILT-IN HANDLERS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--no-health", action="store_true", default=None, help="Do not serve GET /health")
    parser.add_argument("--no-options", action="store_true", default=None, help="Do not answer OPTIONS *")

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / META
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    parser.add_argument("--log-format", choices=["text", "json"], help="Log format (default: text)")
    parser.add_argument("--version", "-v", action="version", version=f"httpservice {__version__}")
    return parser


def build_config(args: argparse.Namespace) -> ServiceConfig:
    """Environment first, then any flag that was given."""
    config = ServiceConfig.from_env()
    overrides = {
        "hostname": args.host,
        "port": args.port,
        "request_timeout": args.timeout,
        "max_workers": args.workers,
        "require_tls": args.tls,
        "cert_file": args.cert,
        "key_file": args.key,
        "disable_health_handler": args.no_health,
        "disable_options_handler": args.no_options,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    if config.min_workers > config.max_workers:
        config.min_workers = config.max_workers
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"httpservice: invalid environment: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    try:
        service = Service(config)
        service.start()
    except (ServiceError, ValueError, OSError) as e:
        logger.error(f"Service failed to start: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
