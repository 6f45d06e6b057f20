"""Trigger router - evaluate a single rule or dispatch an inbound event."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from orchestrator.core.deps import get_db, get_org_id
from orchestrator.db.enums import ExecutionStatus
from orchestrator.schemas.execution import (
    ExecutionResponse,
    RenderedPreviewResponse,
    TriggerEvaluateRequest,
    TriggerEvaluateResponse,
    TriggerEventRequest,
)
from orchestrator.services import trigger_service
from orchestrator.services.dependency_service import RuleNotFoundError
from orchestrator.services.trigger_service import (
    ContactNotFoundError,
    ContactUnsubscribedError,
    RenderedPreview,
)
from orchestrator.utils.business_hours import NoBusinessHoursConfigured

router = APIRouter(tags=["triggers"])


@router.post("/evaluate", response_model=TriggerEvaluateResponse)
def evaluate_trigger(
    data: TriggerEvaluateRequest,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """
    Evaluate one rule for one contact.

    With preview=true nothing is persisted and the rendered content is returned.
    """
    try:
        result = trigger_service.evaluate_trigger(
            db,
            org_id,
            data.trigger_type,
            data.contact_id,
            data.rule_id,
            trigger_data=data.trigger_data,
            preview=data.preview,
        )
    except (RuleNotFoundError, ContactNotFoundError) as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ContactUnsubscribedError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    except NoBusinessHoursConfigured as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    if isinstance(result, RenderedPreview):
        return TriggerEvaluateResponse(
            outcome="preview", preview=RenderedPreviewResponse.model_validate(result)
        )
    if result is None:
        db.commit()
        return TriggerEvaluateResponse(outcome="skipped")

    db.commit()
    db.refresh(result)
    outcome = "pending" if result.status == ExecutionStatus.PENDING.value else "scheduled"
    return TriggerEvaluateResponse(
        outcome=outcome, execution=ExecutionResponse.model_validate(result)
    )


@router.post("/events", response_model=list[ExecutionResponse])
def dispatch_event(
    data: TriggerEventRequest,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Evaluate every matching rule for an inbound event, in dependency order."""
    try:
        executions = trigger_service.dispatch_event(
            db, org_id, data.trigger_type, data.contact_id, data.trigger_data
        )
    except ContactNotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except NoBusinessHoursConfigured as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))
    db.commit()
    for execution in executions:
        db.refresh(execution)
    return executions
