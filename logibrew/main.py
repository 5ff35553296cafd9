"""LogiBrew Decision Chain - Main Application Entry Point."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from logibrew.api.routes import router as api_router
from logibrew.api.routes.health import set_startup_time
from logibrew.audit.anchor import AnchorSink, HttpAnchorSink, InMemoryAnchorSink
from logibrew.audit.repository import ChainStore
from logibrew.audit.service import DecisionLogger
from logibrew.audit.verifier import ChainVerifier
from logibrew.core.config import settings
from logibrew.core.exceptions import register_exception_handlers
from logibrew.core.middleware import get_request_id, setup_middleware
from logibrew.db import close_db, get_session_factory, init_db
from logibrew.metrics.aggregator import MetricsAggregator
from logibrew.storage import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore


def add_request_context(logger, method_name, event_dict):
    """Add request context to logs."""
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


# ============================================================================
# SERVICES
# ============================================================================


def create_anchor_sink() -> Optional[AnchorSink]:
    """HTTP sink when a base URL is configured, in-memory otherwise."""
    if not settings.anchor_enabled:
        return None
    if settings.anchor_base_url:
        return HttpAnchorSink(
            base_url=settings.anchor_base_url,
            api_token=settings.anchor_api_token,
            timeout_seconds=settings.anchor_timeout_seconds,
        )
    return InMemoryAnchorSink()


async def create_kv_store() -> KeyValueStore:
    if settings.storage_backend == "sql":
        await init_db()
        return SqlKeyValueStore(get_session_factory())
    return InMemoryKeyValueStore()


def install_services(
    app: FastAPI,
    kv: KeyValueStore,
    anchor_sink: Optional[AnchorSink] = None,
) -> None:
    """Wire the chain store, decision logger and aggregator onto app.state."""
    store = ChainStore(kv)
    verifier = ChainVerifier()

    app.state.kv = kv
    app.state.anchor_sink = anchor_sink
    app.state.decision_logger = DecisionLogger(store, verifier=verifier, anchor_sink=anchor_sink)
    app.state.metrics_aggregator = MetricsAggregator(store, verifier=verifier)


# ============================================================================
# LIFESPAN
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "logibrew_starting",
        version=settings.app_version,
        environment=settings.environment,
        storage_backend=settings.storage_backend,
    )

    set_startup_time()

    if getattr(app.state, "decision_logger", None) is None:
        install_services(app, await create_kv_store(), create_anchor_sink())

    logger.info(
        "logibrew_ready",
        host=settings.host,
        port=settings.port,
        docs_url="/docs",
    )

    yield

    logger.info("logibrew_shutting_down")

    await app.state.decision_logger.drain_anchors()
    if app.state.anchor_sink is not None:
        await app.state.anchor_sink.close()
    await app.state.kv.close()

    if settings.storage_backend == "sql":
        await close_db()

    logger.info("logibrew_stopped")


# ============================================================================
# APP FACTORY
# ============================================================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="""
# LogiBrew Decision Chain

Tamper-evident, per-shipment hash chains of AI-assisted logistics
decisions, with dashboard metrics and a rule-based delay forecast.

## API Sections

- **Health**: Service health
- **Decision Chains**: Log decisions, read verified chains, check anchors
- **Metrics**: Delay patterns, response times, compliance and forecast
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "Health", "description": "Service health"},
            {"name": "Decision Chains", "description": "Hash-chained decision logging"},
            {"name": "Metrics", "description": "Dashboard metrics and trend forecast"},
        ],
        lifespan=lifespan,
    )

    setup_middleware(app)
    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint - service info."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "environment": settings.environment,
            "docs": "/docs",
            "api": settings.api_prefix,
        }

    return app


# Create app instance
app = create_app()


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "logibrew.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
