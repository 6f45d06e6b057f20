"""Executions router - inspect, cancel, and attribute conversions."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from orchestrator.core.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from orchestrator.core.deps import get_db, get_org_id
from orchestrator.db.enums import ExecutionStatus
from orchestrator.schemas.execution import ConversionRequest, ExecutionResponse
from orchestrator.services import execution_service, send_executor
from orchestrator.services.send_executor import ExecutionNotFoundError, InvalidTransitionError

router = APIRouter(tags=["executions"])


@router.get("", response_model=list[ExecutionResponse])
def list_executions(
    rule_id: UUID | None = Query(None),
    contact_id: UUID | None = Query(None),
    status: ExecutionStatus | None = Query(None),
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    return execution_service.list_executions(
        db,
        org_id,
        rule_id=rule_id,
        contact_id=contact_id,
        status=status.value if status else None,
        limit=limit,
        offset=offset,
    )


@router.get("/{execution_id}", response_model=ExecutionResponse)
def get_execution(
    execution_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    execution = execution_service.get_execution(db, org_id, execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail="Execution not found")
    return execution


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse)
def cancel_execution(
    execution_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        execution = send_executor.cancel_execution(db, org_id, execution_id)
    except ExecutionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    db.commit()
    db.refresh(execution)
    return execution


@router.post("/{execution_id}/conversion", response_model=ExecutionResponse)
def record_conversion(
    execution_id: UUID,
    data: ConversionRequest,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        execution = execution_service.record_conversion(
            db, org_id, execution_id, data.conversion_type, data.conversion_value
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not execution:
        raise HTTPException(status_code=404, detail="Execution not found")
    db.commit()
    db.refresh(execution)
    return execution
