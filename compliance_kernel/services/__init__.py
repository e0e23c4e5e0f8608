"""Services for the compliance kernel (imperative shell around the domain)."""

from compliance_kernel.services.compliance_service import (
    ComplianceDecision,
    TransactionComplianceService,
)
from compliance_kernel.services.licence_monitor import LicenceExpiryMonitor
from compliance_kernel.services.notification_dispatcher import (
    DeliveryResult,
    DispatchResult,
    WebhookDispatcher,
)
from compliance_kernel.services.override_service import (
    OverrideService,
    check_override_ceilings,
)
from compliance_kernel.services.subscription_service import WebhookSubscriptionService
from compliance_kernel.services.subscription_store import SqlWebhookSubscriptionStore

__all__ = [
    "ComplianceDecision",
    "DeliveryResult",
    "DispatchResult",
    "LicenceExpiryMonitor",
    "OverrideService",
    "SqlWebhookSubscriptionStore",
    "TransactionComplianceService",
    "WebhookDispatcher",
    "WebhookSubscriptionService",
    "check_override_ceilings",
]
