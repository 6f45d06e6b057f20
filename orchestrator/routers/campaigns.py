"""Campaigns router - create, enqueue, inspect, and cancel bulk sends."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from orchestrator.core.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from orchestrator.core.deps import get_db, get_org_id
from orchestrator.db.enums import CampaignStatus, RecipientStatus
from orchestrator.schemas.campaign import (
    CampaignCreate,
    CampaignEnqueueRequest,
    CampaignEnqueueResponse,
    CampaignListItem,
    CampaignRecipientResponse,
    CampaignResponse,
    CampaignStatsResponse,
)
from orchestrator.services import campaign_service, send_executor
from orchestrator.services.campaign_service import (
    CampaignNotFoundError,
    CampaignStateError,
    NoEligibleRecipientsError,
)
from orchestrator.services.send_executor import InvalidTransitionError, RecipientNotFoundError

router = APIRouter(tags=["campaigns"])


# =============================================================================
# Campaign CRUD
# =============================================================================


@router.get("", response_model=list[CampaignListItem])
def list_campaigns(
    status: CampaignStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    campaigns, _total = campaign_service.list_campaigns(
        db, org_id, status=status.value if status else None, limit=limit, offset=offset
    )
    return campaigns


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
def create_campaign(
    data: CampaignCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Create a new campaign (draft status)."""
    campaign = campaign_service.create_campaign(db, org_id, data)
    db.commit()
    db.refresh(campaign)
    return campaign


@router.get("/{campaign_id}", response_model=CampaignResponse)
def get_campaign(
    campaign_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    campaign = campaign_service.get_campaign(db, org_id, campaign_id)
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


@router.get("/{campaign_id}/stats", response_model=CampaignStatsResponse)
def get_campaign_stats(
    campaign_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    stats = campaign_service.campaign_stats(db, org_id, campaign_id)
    if not stats:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return stats


# =============================================================================
# Sending
# =============================================================================


@router.post("/{campaign_id}/enqueue", response_model=CampaignEnqueueResponse)
def enqueue_campaign(
    campaign_id: UUID,
    data: CampaignEnqueueRequest,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Create recipients and schedule the campaign; the sweep sends it once due."""
    try:
        result = campaign_service.enqueue_campaign(db, org_id, campaign_id, data)
    except CampaignNotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except CampaignStateError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    except NoEligibleRecipientsError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    return CampaignEnqueueResponse(
        campaign_id=result.campaign_id,
        total_recipients=result.total_recipients,
        skipped=result.skipped,
        scheduled_at=result.scheduled_at,
    )


@router.post("/{campaign_id}/cancel", response_model=CampaignResponse)
def cancel_campaign(
    campaign_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Cancel the campaign and every recipient that has not finished."""
    try:
        campaign = send_executor.cancel_campaign(db, org_id, campaign_id)
    except CampaignNotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except CampaignStateError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(campaign)
    return campaign


# =============================================================================
# Recipients
# =============================================================================


@router.get("/{campaign_id}/recipients", response_model=list[CampaignRecipientResponse])
def list_recipients(
    campaign_id: UUID,
    status: RecipientStatus | None = Query(None),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    if not campaign_service.get_campaign(db, org_id, campaign_id):
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign_service.list_recipients(
        db,
        org_id,
        campaign_id,
        status=status.value if status else None,
        limit=limit,
        offset=offset,
    )


@router.post("/recipients/{recipient_id}/cancel", response_model=CampaignRecipientResponse)
def cancel_recipient(
    recipient_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        recipient = send_executor.cancel_recipient(db, org_id, recipient_id)
    except RecipientNotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(recipient)
    return recipient
