"""FastAPI dependencies for database sessions, tenant resolution, and webhooks."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from orchestrator.core.constants import ORG_HEADER, WEBHOOK_SECRET_HEADER
from orchestrator.db.session import SessionLocal
from orchestrator.services import engagement_service, org_service


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_org_id(
    x_org_id: str | None = Header(None, alias=ORG_HEADER),
    db: Session = Depends(get_db),
) -> UUID:
    """Resolve the tenant from the X-Org-Id header; every request names its organization."""
    if not x_org_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{ORG_HEADER} header required")
    try:
        org_id = UUID(x_org_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {ORG_HEADER} header")
    if not org_service.get_org_by_id(db, org_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return org_id


def require_webhook_secret(
    x_webhook_secret: str | None = Header(None, alias=WEBHOOK_SECRET_HEADER),
) -> None:
    if not engagement_service.verify_webhook_secret(x_webhook_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")
