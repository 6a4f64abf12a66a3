#!/usr/bin/env python3
"""
WhatsApp Gateway service.

Builds the FastAPI application and runs it under uvicorn.

Usage:
    wagateway --config gateway.yaml
    wagateway --instance-name kore --port 8080 --webhook-url https://n8n.example.com/webhook/wa
    uvicorn --factory wagateway.main:create_app --port 8080

Environment variables:
    INSTANCE_NAME: Name of the single managed instance (default: kore)
    AUTHENTICATION_API_KEY: Shared secret required by the REST API
    WEBHOOK_URL: Destination for inbound message notifications
    SERVER_URL: Public URL of this service, included in notifications
    BRIDGE_URL: WebSocket URL of the WhatsApp bridge
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wagateway.__version__ import __version__
from wagateway.api import router
from wagateway.config import GatewayConfig
from wagateway.lifecycle import LifecycleController
from wagateway.notifier import WebhookNotifier
from wagateway.security import SecurityHeadersMiddleware, validate_cors_origins
from wagateway.session_client import SessionClient, create_session_client

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "GATEWAY_CONFIG"


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log unhandled task errors instead of letting them go unnoticed."""
    exc = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if exc is not None:
        logger.error(f"Unhandled exception: {message}: {exc!r}")
    else:
        logger.error(f"Unhandled event loop error: {message}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)

    config: GatewayConfig = app.state.config
    logger.info(f"WhatsApp Gateway {__version__} starting for instance '{config.instance_name}'")
    if not config.auth_key:
        logger.warning("AUTHENTICATION_API_KEY is not set; authenticated routes will reject all requests")

    await app.state.controller.start()
    try:
        yield
    finally:
        await app.state.controller.stop()
        logger.info(f"Connection status at shutdown: {app.state.controller.get_status()}")
        logger.info(f"Webhook delivery stats: {app.state.notifier.get_stats()}")
        logger.info("WhatsApp Gateway stopped")


def create_app(
    config: Optional[GatewayConfig] = None,
    session_client: Optional[SessionClient] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Gateway configuration; loaded from file/environment when omitted
        session_client: WhatsApp session client; built from the config when omitted

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = GatewayConfig.load(os.getenv(CONFIG_PATH_ENV))

    notifier = WebhookNotifier(config)
    if session_client is None:
        session_client = create_session_client(config)
    controller = LifecycleController(config, session_client, notifier)

    app = FastAPI(
        title="WhatsApp Gateway",
        description="Evolution API compatible WhatsApp gateway",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.notifier = notifier
    app.state.controller = controller
    app.state.started_at = time.monotonic()

    cors_origins = validate_cors_origins(config.cors_allowed_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "apikey"],
        expose_headers=[],
        max_age=600,
    )
    app.add_middleware(SecurityHeadersMiddleware)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": True,
                "message": "Invalid request body",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        return JSONResponse(
            status_code=500,
            content={"error": True, "message": "Internal server error"},
        )

    app.include_router(router)
    return app


# ============================================================================
# Command line
# ============================================================================


def setup_logging(level: str = "INFO", format_str: Optional[str] = None) -> None:
    """Configure logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    log_format = format_str or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level, format=log_format, handlers=[logging.StreamHandler(sys.stdout)]
    )

    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Evolution API compatible WhatsApp gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Using configuration file
    %(prog)s --config gateway.yaml

    # Using environment variables
    export AUTHENTICATION_API_KEY=secret123
    export WEBHOOK_URL=https://n8n.example.com/webhook/whatsapp
    %(prog)s --port 8080
        """,
    )

    parser.add_argument(
        "--config", "-c", help="Path to configuration file (JSON or YAML)"
    )

    parser.add_argument("--instance-name", help="Name of the managed instance")

    parser.add_argument("--host", help="Address to bind (default: 0.0.0.0)")

    parser.add_argument("--port", type=int, help="Port to listen on (default: 8080)")

    parser.add_argument("--webhook-url", help="Destination for inbound messages")

    parser.add_argument("--server-url", help="Public URL of this service")

    parser.add_argument("--bridge-url", help="WebSocket URL of the WhatsApp bridge")

    parser.add_argument("--auth-dir", help="Directory for session credentials")

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--no-terminal-qr",
        action="store_true",
        help="Do not print pairing QR codes to the log",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GatewayConfig:
    """Build configuration from arguments, environment and file."""
    config = GatewayConfig.load(args.config or os.getenv(CONFIG_PATH_ENV))

    # Override with command line arguments
    if args.instance_name:
        config.instance_name = args.instance_name
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.webhook_url:
        config.webhook_url = args.webhook_url
    if args.server_url:
        config.server_url = args.server_url
    if args.bridge_url:
        config.bridge_url = args.bridge_url
    if args.auth_dir:
        config.auth_dir = args.auth_dir
    if args.log_level:
        config.log_level = args.log_level
    if args.no_terminal_qr:
        config.print_qr_in_terminal = False

    return config


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    config = build_config(args)

    setup_logging(level=config.log_level, format_str=config.log_format)

    errors = config.validate()
    if errors:
        logger.error("Configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    banner = (
        "\n" + "=" * 60 + "\n"
        f"    WhatsApp Gateway {__version__}\n"
        + "=" * 60 + "\n"
        f"  Instance:  {config.instance_name}\n"
        f"  Listen:    {config.host}:{config.port}\n"
        f"  Bridge:    {config.bridge_url}\n"
        f"  Webhook:   {config.webhook_url or '(not configured)'}\n"
        + "=" * 60 + "\n"
    )
    logger.info(banner)

    try:
        uvicorn.run(
            create_app(config),
            host=config.host,
            port=config.port,
            log_config=None,
            log_level=config.log_level.lower(),
        )
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
