"""
Module: compliance_kernel.db.base
Responsibility: Declarative base and portable column types for the ORM models.
Architecture position: Kernel > DB.  Lowest-level import target within the
    persistence layer.  MUST NOT import from models/, services/ or domain/.

Invariants enforced:
    - UUID primary keys, stored as String(36) so the schema runs unchanged on
      PostgreSQL and SQLite.
    - Timestamps are always returned timezone-aware (UTC), even on backends
      that drop the offset on storage.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Naive values are rejected on write; values read back without an offset
    are interpreted as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes cannot be stored")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Declarative base for all compliance kernel models."""

    type_annotation_map: ClassVar[dict] = {
        # Quantities in grams; 6 decimal places covers milligram fractions
        Decimal: Numeric(28, 6),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )
