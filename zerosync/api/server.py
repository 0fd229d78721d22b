"""
FastAPI server for ZeroSync

This module implements the REST API server of the rollup sequencer. The
application owns one Sequencer: it is started when the application starts and
shut down (or stopped, when supplied by the caller) when it stops.

The server uses FastAPI and includes proper error handling, CORS support and
comprehensive logging.
"""

import uvicorn
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from zerosync import __version__
from zerosync.api.v1.endpoints import router as v1_router
from zerosync.config.settings import get_settings
from zerosync.consensus.sequencer import Sequencer
from zerosync.core.exceptions import RollupError
from zerosync.security.secure_logging import configure_logging, sanitize_for_log

logger = logging.getLogger(__name__)

MAX_UPLOAD_SIZE = 1024 * 1024  # 1 MB


def create_app(sequencer: Sequencer | None = None, start_sequencer: bool = True) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        sequencer: Sequencer to serve; one is built from settings on startup when omitted
        start_sequencer: Start the background batch worker on startup
    """
    settings = get_settings()
    api_config = settings.get_api_config()
    owns_sequencer = sequencer is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        # Startup
        logger.info("Starting ZeroSync API server...")
        if app.state.sequencer is None:
            app.state.sequencer = Sequencer()
        started_here = start_sequencer and not app.state.sequencer.running
        if started_here:
            app.state.sequencer.start()

        yield

        # Shutdown
        logger.info("Shutting down ZeroSync API server...")
        if owns_sequencer:
            app.state.sequencer.shutdown()
        elif started_here:
            app.state.sequencer.stop()

    fast_app = FastAPI(
        title="ZeroSync Sequencer API",
        description="REST API of the ZeroSync rollup sequencer",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    fast_app.state.sequencer = sequencer

    # Add CORS middleware
    fast_app.add_middleware(
        CORSMiddleware,
        allow_origins=api_config["cors_origins"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @fast_app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        # Prevent MIME-sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent Clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        return response

    # Payload size limit middleware
    @fast_app.middleware("http")
    async def limit_upload_size(request: Request, call_next):
        if request.method == "POST" and "content-length" in request.headers:
            try:
                content_length = int(request.headers["content-length"])
            except ValueError:
                content_length = 0
            if content_length > MAX_UPLOAD_SIZE:
                return JSONResponse(
                    status_code=413,
                    content={
                        "error": "payload_too_large",
                        "message": f"Request body too large. Limit is {MAX_UPLOAD_SIZE} bytes",
                        "status_code": 413
                    }
                )
        return await call_next(request)

    fast_app.include_router(v1_router)

    # Root endpoint
    @fast_app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "name": "ZeroSync Sequencer API",
            "version": __version__,
            "api_version": api_config["version"],
            "description": "Rollup sequencer: batching, state roots, proofs and anchoring",
            "docs_url": "/docs",
            "health_check": "/health",
            "endpoints": [
                "POST /transactions",
                "GET /transactions/{tx_hash}",
                "GET /txpool",
                "GET /batches",
                "GET /batches/{batch_id}",
                "GET /batches/{batch_id}/transactions",
                "GET /proofs/{batch_id}",
                "POST /batch/trigger",
                "POST /anchor/retry",
                "GET /stats",
                "GET /state",
                "GET /accounts/{address}",
            ]
        }

    # Rollup error handler
    @fast_app.exception_handler(RollupError)
    async def rollup_error_handler(request: Request, exc: RollupError):
        """Translate rollup errors to their HTTP status"""
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(
                f"{request.method} {request.url.path} rejected: {sanitize_for_log(exc.message)}"
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # HTTP exception handler
    @fast_app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request, exc):
        """HTTP exception handler"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "http_error",
                "message": exc.detail,
                "status_code": exc.status_code
            }
        )

    # Malformed body handler
    @fast_app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request, exc):
        """Malformed request body or parameters"""
        return JSONResponse(
            status_code=422,
            content={
                "error": "unprocessable_entity",
                "message": "Malformed request",
                "status_code": 422,
                "details": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg", "")}
                    for err in exc.errors()
                ]
            }
        )

    # Global exception handler
    @fast_app.exception_handler(Exception)
    async def global_exception_handler(_request, exc):
        """Global exception handler"""
        logger.error(f"Unhandled exception: {str(exc)}")
        is_debug = settings.LOG_LEVEL == "DEBUG"
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": str(exc) if is_debug else "An unexpected error occurred",
                "status_code": 500
            }
        )

    return fast_app


def run_server(host: str | None = None, port: int | None = None):
    """Run the server with uvicorn"""
    settings = get_settings()
    api_config = settings.get_api_config()
    is_debug = settings.LOG_LEVEL == "DEBUG"

    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    uvicorn.run(
        "zerosync.api.server:create_app",
        factory=True,
        host=host or api_config["host"],
        port=port or api_config["port"],
        log_level="debug" if is_debug else "info",
        server_header=False,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    run_server()
