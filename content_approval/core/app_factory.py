"""
Application Factory Pattern

Creates FastAPI app instances with configurable settings for different environments.
Enables better testing, dependency injection, and configuration management.
"""
import sys
import logging
from typing import Optional, List

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from content_approval.core.config import get_settings
from content_approval.core.errors import ApprovalEngineError
from content_approval.core.logging import (
    setup_development_logging,
    setup_production_logging,
    setup_test_logging,
)

logger = logging.getLogger(__name__)

API_VERSION = "v1"


class AppConfig:
    """Configuration for FastAPI application."""

    def __init__(
        self,
        environment: str = None,
        title: str = "Content Approval Engine",
        description: str = "Client approval sessions and collaborative post editing",
        version: str = "1.0.0",
        debug: bool = None,
        enable_docs: bool = None,
        cors_origins: List[str] = None,
    ):
        settings = get_settings()

        # Environment detection
        self.environment = (environment or settings.environment).lower()

        # Basic app settings
        self.title = title
        self.description = description
        self.version = version
        self.debug = debug if debug is not None else (self.environment == "development")

        # API documentation
        self.enable_docs = enable_docs if enable_docs is not None else (self.environment != "production")
        self.docs_url = "/docs" if self.enable_docs else None
        self.redoc_url = "/redoc" if self.enable_docs else None

        # CORS configuration
        self.cors_origins = cors_origins or self._get_default_cors_origins(settings.get_cors_origins())

        self.api_version = API_VERSION

    def _get_default_cors_origins(self, configured: List[str]) -> List[str]:
        """Get default CORS origins based on environment."""
        if configured:
            return configured

        if self.environment == "development":
            return ["*"]  # Allow all in development
        return [get_settings().share_base_url]


def setup_middleware(app: FastAPI, config: AppConfig) -> None:
    """Setup CORS middleware."""
    logger.info("CORS allowed origins: {}".format(config.cors_origins))

    if config.cors_origins == ["*"]:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"]
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Accept", "Accept-Language", "Content-Language", "Content-Type", "X-Requested-With"]
        )


def setup_routers(app: FastAPI) -> tuple:
    """Setup API routers from the registry."""
    from content_approval.api._registry import ROUTERS

    loaded_routers = []
    failed_routers = []
    logger.info("Loading {} routers from registry".format(len(ROUTERS)))

    for router in ROUTERS:
        router_name = getattr(router, 'prefix', 'unknown').replace('/api/{}/'.format(API_VERSION), '') or 'root'
        try:
            app.include_router(router)
            loaded_routers.append(router_name)
            logger.info("Router '{}' loaded successfully".format(router_name))
        except Exception as e:
            failed_routers.append((router_name, str(e)))
            logger.error("Router '{}' failed: {} - {}".format(router_name, type(e).__name__, e))

    return loaded_routers, failed_routers


def setup_exception_handlers(app: FastAPI, loaded_routers: List[str]) -> None:
    """Setup custom exception handlers."""

    @app.exception_handler(ApprovalEngineError)
    async def approval_engine_error_handler(request: Request, exc: ApprovalEngineError):
        """Engine errors that escape a route keep their status code and detail."""
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc: HTTPException):
        """404 handler that passes route-level details through."""
        detail = getattr(exc, "detail", None)
        if isinstance(detail, dict):
            return JSONResponse(status_code=404, content={"detail": detail})

        return JSONResponse(
            status_code=404,
            content={
                "detail": detail or "Not Found",
                "available_modules": ["/api/{}/{}".format(API_VERSION, name) for name in loaded_routers],
                "documentation": "/docs" if app.docs_url else None
            }
        )


def setup_health_endpoints(app: FastAPI, config: AppConfig, loaded_routers: List[str], failed_routers: List[tuple]) -> None:
    """Setup health check endpoints."""

    @app.get("/")
    async def root():
        """Root endpoint for service status."""
        return {
            "name": config.title,
            "version": config.version,
            "status": "operational",
            "environment": config.environment,
            "api_version": config.api_version,
            "health_check": "/health",
            "routes_loaded": len(loaded_routers),
        }

    @app.get("/health")
    async def health_check():
        """Liveness check."""
        settings = get_settings()
        return {
            "status": "healthy" if loaded_routers and not failed_routers else "degraded",
            "version": config.version,
            "api_version": config.api_version,
            "python_version": "{}.{}.{}".format(
                sys.version_info.major, sys.version_info.minor, sys.version_info.micro
            ),
            "environment": config.environment,
            "routers": loaded_routers,
            "failed_routers": ["{}: {}".format(name, error) for name, error in failed_routers],
            "database": "sqlite" if settings.is_sqlite else "postgresql",
        }


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create FastAPI application with factory pattern.

    Args:
        config: Optional configuration object

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = AppConfig()

    # Setup logging first
    if config.environment == "development":
        setup_development_logging()
    elif config.environment == "test":
        setup_test_logging()
    else:
        setup_production_logging()

    logger.info("Creating FastAPI application")
    logger.info("Environment: {}".format(config.environment))

    app = FastAPI(
        title=config.title,
        description=config.description,
        version=config.version,
        docs_url=config.docs_url,
        redoc_url=config.redoc_url,
        debug=config.debug
    )

    setup_middleware(app, config)
    loaded_routers, failed_routers = setup_routers(app)
    setup_exception_handlers(app, loaded_routers)
    setup_health_endpoints(app, config, loaded_routers, failed_routers)

    logger.info("FastAPI application created: {} routers, {} routes".format(len(loaded_routers), len(app.routes)))

    return app


# Convenience functions for common configurations
def create_development_app() -> FastAPI:
    """Create app configured for development."""
    config = AppConfig(environment="development", debug=True, enable_docs=True)
    return create_app(config)


def create_production_app() -> FastAPI:
    """Create app configured for production."""
    config = AppConfig(environment="production", debug=False, enable_docs=False)
    return create_app(config)


def create_test_app(cors_origins: List[str] = None) -> FastAPI:
    """Create app configured for testing."""
    config = AppConfig(
        environment="test",
        debug=True,
        enable_docs=False,
        cors_origins=cors_origins or ["http://testserver"]
    )
    return create_app(config)
