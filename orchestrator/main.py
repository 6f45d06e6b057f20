"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orchestrator.core.config import settings

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Automation Orchestrator API",
    description="Multi-tenant messaging automation: rules, campaigns, and scheduled sends",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Org-Id", "X-Requested-With"],
)

# ============================================================================
# Routers
# ============================================================================

from orchestrator.routers import (  # noqa: E402
    business_hours,
    campaigns,
    dependencies,
    executions,
    health,
    messages,
    rules,
    send_windows,
    triggers,
    webhooks,
)

app.include_router(health.router)

# Automation rules and their dependency graph
app.include_router(rules.router, prefix="/rules")
app.include_router(dependencies.router)  # Mixed paths: /rules/{id}/dependencies and /dependencies/{id}

# Trigger evaluation and resulting executions
app.include_router(triggers.router, prefix="/triggers")
app.include_router(executions.router, prefix="/executions")

# Bulk campaigns
app.include_router(campaigns.router, prefix="/campaigns")

# Scheduling
app.include_router(business_hours.router, prefix="/business-hours")
app.include_router(send_windows.router, prefix="/send-windows")
app.include_router(messages.router, prefix="/messages")

# Provider callbacks
app.include_router(webhooks.router, prefix="/webhooks")
