"""Provider webhooks - engagement callbacks (open, click, bounce, complaint)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orchestrator.core.deps import get_db, require_webhook_secret
from orchestrator.schemas.scheduling import EngagementEvent
from orchestrator.services import engagement_service

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post(
    "/engagement",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_webhook_secret)],
)
def engagement_webhook(
    event: EngagementEvent,
    db: Session = Depends(get_db),
):
    """Always 202 for known event types so providers do not retry unknown ids."""
    try:
        target = engagement_service.handle_provider_event(db, event)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported event type: {event.event_type}")
    db.commit()
    if target is None:
        return {"matched": False}
    return {"matched": True, "kind": target.kind, "id": str(target.id)}
