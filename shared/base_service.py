"""
Base service class for FRED web proxy services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from typing import Dict, Any
import time

from shared.config import ProxyConfig
from shared.errors import ProxyException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: ProxyConfig):
        self.service_name = service_name
        self.config = config
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name} service",
            description="Read-through caching proxy for the FRED API",
            version="1.0.0",
        )

    def _setup_middleware(self):
        """Set up middleware."""

        # Browser clients call from any origin; the proxy holds no client credentials.
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["GET"],
            allow_headers=["*"],
        )
        self.app.add_middleware(GZipMiddleware, minimum_size=1000)

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.perf_counter()

            try:
                response = await call_next(request)
            finally:
                clear_context()

            duration = time.perf_counter() - start_time
            response.headers["X-Request-ID"] = request_id

            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
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

            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            healthy = all(value == "ok" for value in dependencies.values())
            return JSONResponse(
                status_code=200 if healthy else 503,
                content={
                    "service": self.service_name,
                    "status": "ok" if healthy else "degraded",
                    "uptime_seconds": round(time.time() - self._start_time, 3),
                    "dependencies": dependencies,
                    "details": await self._health_details(),
                    "version": "1.0.0",
                },
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

        @self.app.exception_handler(ProxyException)
        async def proxy_exception_handler(request: Request, exc: ProxyException):
            """Map typed failures to HTTP responses."""
            status_code = self._status_for(exc)
            self.metrics.record_error(exc.code)
            log = self.logger.warning if status_code < 500 else self.logger.error
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                status_code=status_code,
            )
            return JSONResponse(
                status_code=status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error_type=type(exc).__name__, exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    def _status_for(self, exc: ProxyException) -> int:
        """HTTP status for a typed failure. Override in subclasses."""
        return 400

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    async def _health_details(self) -> Dict[str, Any]:
        """Extra health payload. Override in subclasses."""
        return {}

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
