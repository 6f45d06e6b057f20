"""Organization service - tenant lookup, creation, and per-org write serialization."""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from orchestrator.db.base import utcnow
from orchestrator.db.models import Organization


class OrgNotFoundError(LookupError):
    """Organization does not exist."""

    pass


def get_org_by_id(db: Session, org_id: UUID) -> Organization | None:
    return db.query(Organization).filter(Organization.id == org_id).first()


def require_org(db: Session, org_id: UUID) -> Organization:
    org = get_org_by_id(db, org_id)
    if not org:
        raise OrgNotFoundError(f"Organization {org_id} not found")
    return org


def get_org_by_slug(db: Session, slug: str) -> Organization | None:
    return db.query(Organization).filter(Organization.slug == slug.lower()).first()


def create_org(
    db: Session,
    name: str,
    slug: str,
    timezone: str = "UTC",
    enforce_business_hours: bool = True,
    holiday_country: str | None = None,
    max_automation_sends_per_day: int = 3,
) -> Organization:
    """Create a new organization. Caller commits."""
    org = Organization(
        name=name,
        slug=slug.lower(),
        timezone=timezone,
        enforce_business_hours=enforce_business_hours,
        holiday_country=holiday_country,
        max_automation_sends_per_day=max_automation_sends_per_day,
    )
    db.add(org)
    db.flush()
    return org


def lock_org(db: Session, org_id: UUID) -> None:
    """
    Serialize writers for one organization until the current transaction ends.

    PostgreSQL uses a transaction-scoped advisory lock keyed by the org; other
    backends take a write lock by touching the organization row.
    """
    if db.get_bind().dialect.name == "postgresql":
        db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"org:{org_id}"},
        )
        return
    db.query(Organization).filter(Organization.id == org_id).update(
        {Organization.updated_at: utcnow()}, synchronize_session=False
    )
