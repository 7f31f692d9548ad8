# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""WSGI server and command-line entry point for the gateway.

Each request is handled on its own thread by werkzeug's threaded
server; the pipeline behind it is shared.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
from werkzeug.serving import make_server
from werkzeug.wrappers import Request

from s3gate.authorizer import BucketAuthorizer
from s3gate.config import CONFIG_PATH_ENV, ConfigError, GatewayConfig
from s3gate.forwarder import ProxyForwarder
from s3gate.logging import configure_logging
from s3gate.pipeline import RequestPipeline
from s3gate.signing.key_cache import SigningKeyCache


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse


logger = logging.getLogger(__name__)


def build_pipeline(
    config: GatewayConfig, *, client: httpx.Client | None = None
) -> RequestPipeline:
    """Wire a ``RequestPipeline`` from configuration.

    Args:
        config: Gateway configuration.
        client: Optional ``httpx.Client`` for the upstream side.

    Returns:
        Ready-to-use pipeline with its own signing-key cache.
    """
    forwarder = ProxyForwarder(
        config.upstream_url,
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        client=client,
    )
    return RequestPipeline(
        verification_credential=config.verification_credential,
        upstream_credential=config.upstream_credential,
        authorizer=BucketAuthorizer(config.allowed_buckets),
        forwarder=forwarder,
        key_cache=SigningKeyCache(),
        max_hashed_body_bytes=config.max_hashed_body_bytes,
    )


class GatewayServer:
    """Threaded WSGI server in front of a ``RequestPipeline``."""

    def __init__(
        self, config: GatewayConfig, pipeline: RequestPipeline | None = None
    ) -> None:
        self.config = config
        self.pipeline = pipeline or build_pipeline(config)
        self._server: Any = None
        self._thread: threading.Thread | None = None

    def wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: StartResponse,
    ) -> Iterable[bytes]:
        """WSGI application entry point."""
        request = Request(environ)
        response = self.pipeline.handle(request)
        return response(environ, start_response)

    def _bind(self) -> None:
        self._server = make_server(
            self.config.host,
            self.config.port,
            self.wsgi_app,
            threaded=True,
        )
        logger.info(
            "101\tSTART\t-\t-\tProxying to %s on port %d",
            self.config.upstream_url,
            self.config.port,
        )
        logger.info(
            "101\tSTART\t-\t-\tAllowed buckets: %s",
            ", ".join(sorted(self.config.allowed_buckets)) or "(none)",
        )

    def start(self) -> None:
        """Start serving in a background thread."""
        self._bind()
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="GatewayServer",
        )
        self._thread.start()

    def serve_forever(self) -> None:
        """Serve on the calling thread until ``stop()`` is called."""
        self._bind()
        self._server.serve_forever()

    def stop(self) -> None:
        """Stop accepting requests and release the upstream client."""
        if self._server:
            self._server.shutdown()
            self._server = None
            logger.info("Gateway server stopped")
        self.pipeline.forwarder.close()


def load_config(config_path: Path | None) -> GatewayConfig:
    """Load from *config_path*, ``$S3GATE_CONFIG``, or the environment."""
    if config_path is None and os.environ.get(CONFIG_PATH_ENV):
        config_path = Path(os.environ[CONFIG_PATH_ENV])
    if config_path is not None:
        return GatewayConfig.from_yaml(config_path)
    return GatewayConfig.from_env()


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0=success, 1=config error, 3=runtime error).
    """
    parser = argparse.ArgumentParser(
        description="S3 SigV4 re-signing gateway",
        epilog=(
            "Verifies client signatures, enforces a bucket allowlist and "
            "forwards re-signed requests upstream."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"YAML config file (default: ${CONFIG_PATH_ENV} or environment)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    configure_logging(logging.DEBUG if args.debug else logging.INFO)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    if not args.debug:
        configure_logging(config.log_level)

    server = GatewayServer(config)

    def shutdown_handler(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down...", signum)
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        server.serve_forever()
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except Exception as e:
        logger.exception("Fatal runtime error: %s", e)
        return 3
    finally:
        server.stop()


if __name__ == "__main__":
    sys.exit(main())
