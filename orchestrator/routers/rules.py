"""Automation rules router - CRUD for rules."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from orchestrator.core.deps import get_db, get_org_id
from orchestrator.db.enums import TriggerType
from orchestrator.schemas.rule import RuleCreate, RuleResponse, RuleUpdate
from orchestrator.services import rule_service

router = APIRouter(tags=["rules"])


@router.get("", response_model=list[RuleResponse])
def list_rules(
    trigger_type: TriggerType | None = Query(None),
    include_inactive: bool = Query(True),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    return rule_service.list_rules(
        db,
        org_id,
        trigger_type=trigger_type.value if trigger_type else None,
        include_inactive=include_inactive,
    )


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    data: RuleCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        rule = rule_service.create_rule(db, org_id, data)
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(rule)
    return rule


@router.get("/{rule_id}", response_model=RuleResponse)
def get_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    rule = rule_service.get_rule(db, org_id, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.patch("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: UUID,
    data: RuleUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        rule = rule_service.update_rule(db, org_id, rule_id, data)
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Delete a rule; rules that are referenced or have history are soft-disabled."""
    result = rule_service.delete_rule(db, org_id, rule_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    db.commit()
    if result == "deleted":
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return {"id": str(rule_id), "result": result}
