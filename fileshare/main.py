import argparse
import logging
import sys
from typing import Optional, Sequence

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fileshare.app.handlers import DOWNLOAD_PREFIX, LIST_FILE_NAME, FileHandlers
from fileshare.config import DEFAULT_CONFIG_PATH, Config, ConfigError, load_config
from fileshare.logger_config import setup_logger
from fileshare.middleware import TimeoutMiddleware

# Routes accept every method so the handlers can answer with their own 405 message
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
    """Render HTTP errors as a one-line plain text message."""
    return PlainTextResponse(
        f"{exc.detail}\n",
        status_code=exc.status_code,
        headers={**(exc.headers or {}), "X-Content-Type-Options": "nosniff"},
    )


def create_app(config: Config, logger: logging.Logger) -> FastAPI:
    """Build the application with its handlers bound to ``config`` and ``logger``."""
    app = FastAPI(title="File Sharing Server", docs_url=None, redoc_url=None, openapi_url=None)

    handlers = FileHandlers(config.uploader, logger)
    app.state.handlers = handlers

    app.add_api_route("/upload", handlers.upload, methods=ALL_METHODS)
    # The listing must be registered before the catch-all download route
    app.add_api_route(DOWNLOAD_PREFIX + LIST_FILE_NAME, handlers.list_files, methods=ALL_METHODS)
    app.add_api_route(DOWNLOAD_PREFIX + "{name:path}", handlers.download, methods=ALL_METHODS)

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_middleware(
        TimeoutMiddleware,
        read_timeout=config.server.read_timeout,
        write_timeout=config.server.write_timeout,
        logger=logger,
    )
    return app


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HTTP file sharing server")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="path to the YAML configuration file")
    parser.add_argument("--log-file", default="server.log", help="file the server log is appended to")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    logger = setup_logger(log_file=args.log_file)

    try:
        config = load_config(args.config, logger)
    except ConfigError as e:
        logger.critical(f"error loading config {e}")
        sys.exit(1)

    app = create_app(config, logger)

    logger.info(f"starting server on {config.server.address}")
    logger.info(f"Storage directory: {config.uploader.storage_dir}")
    logger.info(f"Maximum upload size: {config.uploader.max_upload_size_mb} MB")

    # uvicorn logs a failed bind and exits with status 1
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        timeout_keep_alive=config.server.idle_timeout,
    )


if __name__ == "__main__":
    main()
