import uuid
from datetime import datetime, timezone

from sqlalchemy import Uuid
from sqlalchemy.orm import DeclarativeBase

from orchestrator.db.types import JSONType, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    type_annotation_map = {
        datetime: UTCDateTime(),
        uuid.UUID: Uuid(as_uuid=True),
        dict: JSONType,
        list: JSONType,
    }
