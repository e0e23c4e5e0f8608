"""ORM models.  Importing this package registers every table on ``Base.metadata``."""

from compliance_kernel.models.webhook_subscription import WebhookSubscriptionModel

__all__ = ["WebhookSubscriptionModel"]
