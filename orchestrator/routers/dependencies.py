"""Rule dependency router - the per-organization dependency graph."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orchestrator.core.deps import get_db, get_org_id
from orchestrator.schemas.rule import DependencyCreate, DependencyResponse
from orchestrator.services import dependency_service, rule_service
from orchestrator.services.dependency_service import (
    CircularDependencyError,
    DuplicateDependencyError,
    RuleNotFoundError,
)

router = APIRouter(tags=["dependencies"])


@router.get("/rules/{rule_id}/dependencies", response_model=list[DependencyResponse])
def list_dependencies(
    rule_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Edges that touch the rule in either direction."""
    if not rule_service.get_rule(db, org_id, rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return dependency_service.list_dependencies(db, org_id, rule_id=rule_id)


@router.post(
    "/rules/{rule_id}/dependencies",
    response_model=DependencyResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_dependency(
    rule_id: UUID,
    data: DependencyCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        return dependency_service.add_dependency(
            db,
            org_id,
            rule_id,
            data.depends_on_rule_id,
            data.dependency_type,
            data.delay_minutes,
        )
    except RuleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (CircularDependencyError, DuplicateDependencyError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/dependencies/{dependency_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_dependency(
    dependency_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    if not dependency_service.remove_dependency(db, org_id, dependency_id):
        raise HTTPException(status_code=404, detail="Dependency not found")
