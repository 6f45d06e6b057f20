"""Scheduled messages router."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from orchestrator.core.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from orchestrator.core.deps import get_db, get_org_id
from orchestrator.db.enums import MessageStatus
from orchestrator.schemas.scheduling import MessageCreate, MessageResponse
from orchestrator.services import message_service
from orchestrator.services.message_service import MessageStateError

router = APIRouter(tags=["messages"])


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def schedule_message(
    data: MessageCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        message = message_service.schedule_message(db, org_id, data)
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(message)
    return message


@router.get("", response_model=list[MessageResponse])
def list_messages(
    status: MessageStatus | None = Query(None),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    return message_service.list_messages(
        db, org_id, status=status.value if status else None, limit=limit, offset=offset
    )


@router.get("/{message_id}", response_model=MessageResponse)
def get_message(
    message_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    message = message_service.get_message(db, org_id, message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.post("/{message_id}/cancel", response_model=MessageResponse)
def cancel_message(
    message_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        message = message_service.cancel_message(db, org_id, message_id)
    except MessageStateError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    db.commit()
    db.refresh(message)
    return message
