"""
Base service class for Orderly services.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import os
import time

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from shared.config import ServiceConfig, get_config
from shared.envelope import err, ok
from shared.errors import PlatformException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector

REQUEST_ID_HEADER = "X-Request-ID"

HTTP_ERROR_CODES = {
    404: ("NOT_FOUND", "Endpoint not found"),
    405: ("METHOD_NOT_ALLOWED", "Method not allowed"),
}


def format_iso(value: datetime) -> str:
    """Format datetime values as ISO-8601 strings with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return format_iso(datetime.now(timezone.utc))


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id, time the request, and contain unhandled errors."""

    def __init__(self, app, service_name: str, metrics: MetricsCollector):
        super().__init__(app)
        self.metrics = metrics
        self.logger = get_logger(f"{service_name}.http")

    async def dispatch(self, request: Request, call_next):
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "Unhandled error",
                error=str(e),
                method=request.method,
                path=request.url.path,
                request_id=request_id,
                exc_info=True,
            )
            self.metrics.record_error(type(e).__name__)
            response = JSONResponse(
                status_code=500,
                content=err("INTERNAL_ERROR", "Internal server error"),
            )

        duration = time.time() - start_time
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        self.metrics.record_http_request(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration=duration
        )
        self.logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
            request_id=request_id,
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        clear_context()
        return response


class BaseService:
    """Base service class with common functionality."""

    display_name = "Service"

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.display_name}",
            description=f"Orderly Platform - {self.display_name}",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )

    def _setup_middleware(self):
        """Set up middleware."""
        self.app.add_middleware(RequestContextMiddleware, service_name=self.service_name, metrics=self.metrics)

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[REQUEST_ID_HEADER],
        )

    def _setup_exception_handlers(self):
        """Render every error as an envelope."""

        @self.app.exception_handler(PlatformException)
        async def platform_exception_handler(request: Request, exc: PlatformException):
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(),
                headers=exc.headers,
            )

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            message = describe_validation_error(exc.errors())
            self.logger.warning("Validation error", message=message, path=request.url.path)
            return JSONResponse(status_code=400, content=err("VALIDATION_ERROR", message))

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            code, message = HTTP_ERROR_CODES.get(exc.status_code, ("HTTP_ERROR", str(exc.detail)))
            return JSONResponse(
                status_code=exc.status_code,
                content=err(code, message),
                headers=getattr(exc, "headers", None),
            )

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            self.metrics.record_health_check("ok")
            return ok(await self._health_details())

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=generate_latest(self.metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

    async def _health_details(self) -> Dict[str, Any]:
        """Health payload. Override in subclasses to add dependencies."""
        return {
            "status": "OK",
            "service": self.display_name,
            "timestamp": utc_now_iso(),
            "version": "1.0.0",
            "commit": os.getenv("GIT_COMMIT", "unknown"),
        }

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )


def describe_validation_error(errors) -> str:
    """First validation problem as a human readable sentence."""
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    message = first.get("msg", "Invalid value")
    if location:
        return f"\"{'.'.join(location)}\" {message}"
    return message
