"""
Module: compliance_kernel.models.webhook_subscription
Responsibility: ORM persistence for webhook subscriptions and their
    delivery-health counters.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - failed_attempts is never negative (check constraint).
    - event_types is stored as a JSON list of event-type values.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import Base, UTCDateTime


class WebhookSubscriptionModel(Base):
    """A registered webhook receiver."""

    __tablename__ = "webhook_subscriptions"

    __table_args__ = (
        CheckConstraint("failed_attempts >= 0", name="ck_webhook_failed_attempts"),
        Index("idx_webhook_integration_system", "integration_system_id"),
        Index("idx_webhook_active", "is_active"),
    )

    integration_system_id: Mapped[str] = mapped_column(String(100), nullable=False)

    event_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    callback_url: Mapped[str] = mapped_column(String(2000), nullable=False)

    # HMAC signing key
    secret_key: Mapped[str] = mapped_column(String(500), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_success_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    last_failure_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WebhookSubscriptionModel {self.id} {self.integration_system_id} "
            f"active={self.is_active} failures={self.failed_attempts}>"
        )
