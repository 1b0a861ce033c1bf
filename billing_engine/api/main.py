"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from billing_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from billing_engine.api.v1 import bills, payments, tenants, history
from billing_engine.config import Settings, settings as default_settings
from billing_engine.infrastructure.database.session import create_db_engine, create_session_factory
from billing_engine.infrastructure.observability.logging import setup_logging


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application with its own database engine"""
    settings = settings or default_settings
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Property Billing Engine",
        description="Billing, payment settlement and deposit reconciliation service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    engine = create_db_engine(settings.database_url)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    # history first: /bills/history must not be captured by /bills/{bill_id}
    app.include_router(history.router, prefix="/v1", tags=["history"])
    app.include_router(bills.router, prefix="/v1", tags=["bills"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(tenants.router, prefix="/v1", tags=["tenants"])

    return app


app = create_app()
