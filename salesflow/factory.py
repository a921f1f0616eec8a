"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .agents import register_default_workflows, register_demo_agents
from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config, validate_config
from .core.capabilities import CapabilityRegistry
from .core.event_bus import EventBus
from .core.logging import get_logger, setup_logging
from .core.middleware import (
    ErrorHandlingMiddleware,
    PerformanceMonitoringMiddleware,
    RequestLoggingMiddleware,
)
from .core.orchestrator import WorkflowOrchestrator
from .core.registry import WorkflowDefinitionRegistry
from .health import UNHEALTHY, ComponentHealthChecker, register_orchestrator_checks
from .storage import Database, ExecutionStateStore, InMemoryExecutionStateStore, SqlAlchemyExecutionStateStore


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.capabilities: Optional[CapabilityRegistry] = None
        self.registry: Optional[WorkflowDefinitionRegistry] = None
        self.event_bus: Optional[EventBus] = None
        self.state_store: Optional[ExecutionStateStore] = None
        self.orchestrator: Optional[WorkflowOrchestrator] = None
        self.health_checker: Optional[ComponentHealthChecker] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def create_state_store(config: AppConfig, logger) -> ExecutionStateStore:
    """Pick the execution state store from configuration."""
    if not config.uses_database:
        logger.info("Execution state store: in-memory")
        return InMemoryExecutionStateStore()

    try:
        database = Database(
            config.database_url,
            echo=config.database_echo,
            connect_args=config.get_database_connect_args()
        )
        store = SqlAlchemyExecutionStateStore(database)
        logger.info("Execution state store: database tables ready")
        return store
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, logger) -> WorkflowOrchestrator:
    """Initialize the orchestrator and everything it coordinates."""
    try:
        capabilities = CapabilityRegistry()
        registry = WorkflowDefinitionRegistry(capabilities)
        event_bus = EventBus()
        state_store = create_state_store(config, logger)
        orchestrator = WorkflowOrchestrator(
            registry=registry,
            capabilities=capabilities,
            event_bus=event_bus,
            state_store=state_store,
            config=config
        )

        logger.info("Core components initialized")
        return orchestrator

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


async def graceful_shutdown(orchestrator: WorkflowOrchestrator, logger) -> None:
    """Handle graceful shutdown of application components."""
    logger.info("Shutting down Sales Workflow Orchestrator")
    try:
        await orchestrator.shutdown()
        logger.info("Orchestrator shutdown completed")
    except Exception as e:
        logger.error(f"Error during orchestrator shutdown: {str(e)}")


def create_lifespan_handler(config: AppConfig):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            orchestrator = initialize_core_components(config, logger)
            health_checker = ComponentHealthChecker(default_timeout=config.health_check_timeout)

            app_state.config = config
            app_state.capabilities = orchestrator.capabilities
            app_state.registry = orchestrator.registry
            app_state.event_bus = orchestrator.event_bus
            app_state.state_store = orchestrator.state_store
            app_state.orchestrator = orchestrator
            app_state.health_checker = health_checker
            app_state.logger = logger

            register_demo_agents(orchestrator.capabilities)
            if config.load_default_workflows:
                register_default_workflows(orchestrator.registry)

            init_dependencies(orchestrator)
            register_orchestrator_checks(health_checker, orchestrator)
            logger.info("Health checks registered")

            await orchestrator.initialize()
            logger.info("Application startup completed successfully")

        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        yield

        # Shutdown
        await graceful_shutdown(orchestrator, logger)

    return lifespan


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create and configure FastAPI application instance."""
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Event-driven orchestration of sales workflows across worker agents",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    if config.enable_performance_monitoring:
        app.add_middleware(ErrorHandlingMiddleware)
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
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
        return {"status": "healthy", "service": service_name, "version": config.app_version}

    @app.get("/health/detailed")
    async def detailed_health_check():
        """Component health; 503 when any check is unhealthy, 200 when healthy or degraded."""
        if app_state.health_checker is None:
            return JSONResponse(
                status_code=503,
                content={"service": service_name, "overall_status": "starting",
                         "timestamp": datetime.utcnow().isoformat()}
            )

        try:
            results = await app_state.health_checker.run_all_checks()
            status_code = 503 if results["overall_status"] == UNHEALTHY else 200
            return JSONResponse(
                status_code=status_code,
                content={"service": service_name, "version": config.app_version, **results}
            )
        except Exception as e:
            get_logger(__name__).error(f"Health check failed: {str(e)}")
            return JSONResponse(
                status_code=503,
                content={
                    "service": service_name,
                    "overall_status": "unhealthy",
                    "error": str(e),
                    "timestamp": datetime.utcnow().isoformat()
                }
            )

    @app.get("/health/ready")
    async def readiness_check():
        """Ready once the orchestrator is initialized and the state store answers."""
        orchestrator = app_state.orchestrator
        if orchestrator is None or not orchestrator.is_initialized:
            return JSONResponse(
                status_code=503,
                content={"ready": False, "timestamp": datetime.utcnow().isoformat()}
            )

        result = await app_state.health_checker.run_check("state_store")
        ready = result["status"] != UNHEALTHY
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"ready": ready, "checks": {"state_store": result},
                     "timestamp": datetime.utcnow().isoformat()}
        )

    @app.get("/health/live")
    async def liveness_check():
        return {"alive": True, "timestamp": datetime.utcnow().isoformat()}


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
