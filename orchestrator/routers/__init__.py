"""API routers."""

from orchestrator.routers.business_hours import router as business_hours_router
from orchestrator.routers.campaigns import router as campaigns_router
from orchestrator.routers.dependencies import router as dependencies_router
from orchestrator.routers.executions import router as executions_router
from orchestrator.routers.health import router as health_router
from orchestrator.routers.messages import router as messages_router
from orchestrator.routers.rules import router as rules_router
from orchestrator.routers.send_windows import router as send_windows_router
from orchestrator.routers.triggers import router as triggers_router
from orchestrator.routers.webhooks import router as webhooks_router

__all__ = [
    "business_hours_router",
    "campaigns_router",
    "dependencies_router",
    "executions_router",
    "health_router",
    "messages_router",
    "rules_router",
    "send_windows_router",
    "triggers_router",
    "webhooks_router",
]
