"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import AppConfig, get_config, validate_config
from .core.executor_registry import ExecutorRegistry, create_default_registry
from .core.graph_store import GraphStore
from .core.lifecycle import ExecutionLifecycleManager
from .core.logging import setup_logging, get_logger
from .core.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from .core.traversal import TraversalEngine
from .storage.database import create_tables, get_session, init_database
from .storage.migrations import run_migrations
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.registry: Optional[ExecutorRegistry] = None
        self.graph_store: Optional[GraphStore] = None
        self.traversal_engine: Optional[TraversalEngine] = None
        self.lifecycle: Optional[ExecutionLifecycleManager] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> None:
    """Connect to the configured database, create tables and run migrations."""
    try:
        init_database(config.database_url, echo=config.database_echo)
        create_tables()
        logger.info("Database tables created")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    try:
        run_migrations()
    except SQLAlchemyError as e:
        # Indexes only speed up listing; startup continues without them
        logger.warning(f"Database migrations failed: {str(e)}")


def initialize_core_components(config: AppConfig, logger, gateway=None) -> tuple:
    """Build the registry, store, traversal engine and lifecycle manager."""
    registry = create_default_registry(gateway)
    graph_store = GraphStore()
    traversal_engine = TraversalEngine(registry, **config.get_traversal_settings())
    lifecycle = ExecutionLifecycleManager(
        graph_store,
        traversal_engine,
        max_concurrent_executions=config.max_concurrent_executions,
    )

    logger.info("Core components initialized")
    return registry, graph_store, traversal_engine, lifecycle


def create_lifespan_handler(config: AppConfig, gateway=None):
    """Create the application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        initialize_database(config, logger)
        registry, graph_store, traversal_engine, lifecycle = initialize_core_components(config, logger, gateway)

        app_state.config = config
        app_state.registry = registry
        app_state.graph_store = graph_store
        app_state.traversal_engine = traversal_engine
        app_state.lifecycle = lifecycle
        app_state.logger = logger

        init_dependencies(graph_store=graph_store, lifecycle=lifecycle, registry=registry)
        logger.info("Application startup completed successfully")

        yield

        logger.info(f"Shutting down {config.app_name}")
        lifecycle.shutdown(wait=True, cancel_running=True)

    return lifespan


def create_app(config: Optional[AppConfig] = None, gateway=None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        config: Application configuration; loaded from the environment when omitted
        gateway: SideEffectGateway for action nodes; simulated when omitted
    """
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Executes editor-built automation workflows and records every run",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, gateway)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    app.add_middleware(ErrorHandlingMiddleware)
    if config.enable_request_logging:
        app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""
    service_name = config.app_name.lower().replace(" ", "-")

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "service": service_name,
            "version": config.app_version
        }

    @app.get("/health/ready")
    def readiness_check():
        """Readiness check: the database answers and the engine is initialized."""
        checks = {}
        try:
            session = get_session()
            try:
                session.execute(text("SELECT 1"))
            finally:
                session.close()
            checks["database"] = {"status": "healthy"}
        except SQLAlchemyError as e:
            get_logger(__name__).error(f"Database readiness check failed: {str(e)}")
            checks["database"] = {"status": "unhealthy", "error": str(e)}

        lifecycle = app_state.lifecycle
        if lifecycle is None:
            checks["lifecycle"] = {"status": "unhealthy", "error": "not initialized"}
        else:
            checks["lifecycle"] = {
                "status": "healthy",
                "active_executions": len(lifecycle.active_executions()),
                "max_concurrent": lifecycle.max_concurrent_executions,
            }

        ready = all(check["status"] == "healthy" for check in checks.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "ready": ready,
                "checks": checks,
                "timestamp": datetime.utcnow().isoformat()
            }
        )


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
