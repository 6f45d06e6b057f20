"""Send windows router - best engagement buckets for an organization."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orchestrator.core.deps import get_db, get_org_id
from orchestrator.schemas.scheduling import SendWindowResponse
from orchestrator.services import send_time_service

router = APIRouter(tags=["send-windows"])


@router.get("", response_model=list[SendWindowResponse])
def get_send_windows(
    top_n: int = Query(5, ge=1, le=168),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Top engagement windows (hour, day; 0 = Sunday) in the organization's timezone."""
    return send_time_service.ranked_windows(db, org_id, top_n=top_n)
