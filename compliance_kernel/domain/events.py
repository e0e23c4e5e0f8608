"""
Compliance events published to webhook subscribers.

Each event is a category tag (``WebhookEventType``) plus a plain-data
payload.  The builders below are the only place payload shapes are
defined, so receivers see the same keys wherever an event originates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, ClassVar

from compliance_kernel.domain.licence import ExpiringLicence
from compliance_kernel.domain.transaction import Transaction
from compliance_kernel.domain.values import NamedSet


class WebhookEventType(str, Enum):
    COMPLIANCE_STATUS_CHANGED = "ComplianceStatusChanged"
    ORDER_APPROVED = "OrderApproved"
    ORDER_REJECTED = "OrderRejected"
    LICENCE_EXPIRING = "LicenceExpiring"
    OVERRIDE_APPROVED = "OverrideApproved"


@dataclass(frozen=True)
class EventTypeSet(NamedSet[WebhookEventType]):
    """Event types a subscription listens to."""

    member_type: ClassVar[type[Enum]] = WebhookEventType


@dataclass(frozen=True)
class ComplianceEvent:
    event_type: WebhookEventType
    data: dict[str, Any] = field(default_factory=dict)


def _transaction_summary(transaction: Transaction) -> dict[str, Any]:
    return {
        "transactionId": str(transaction.transaction_id),
        "externalReference": transaction.external_reference,
        "transactionType": transaction.transaction_type.value,
        "customerAccount": transaction.customer_account,
        "transactionDate": transaction.transaction_date.isoformat(),
        "validationStatus": transaction.validation_status.value,
        "overrideStatus": transaction.override_status.value,
    }


def compliance_status_changed(transaction: Transaction) -> ComplianceEvent:
    data = _transaction_summary(transaction)
    data["violations"] = [
        {
            "code": v.code,
            "message": v.message,
            "severity": v.severity.value,
            "overrideEligible": v.override_eligible,
            "lineNumber": v.line_number,
            "substanceCode": v.substance_code,
        }
        for v in transaction.violations
    ]
    data["requiresOverride"] = transaction.requires_override
    return ComplianceEvent(WebhookEventType.COMPLIANCE_STATUS_CHANGED, data)


def order_approved(transaction: Transaction) -> ComplianceEvent:
    data = _transaction_summary(transaction)
    data["licencesUsed"] = [str(licence_id) for licence_id in transaction.licences_used]
    return ComplianceEvent(WebhookEventType.ORDER_APPROVED, data)


def order_rejected(transaction: Transaction) -> ComplianceEvent:
    data = _transaction_summary(transaction)
    decision = transaction.override_decision
    if decision is not None:
        data["rejectedBy"] = decision.decided_by
        data["reason"] = decision.justification
    data["errors"] = list(transaction.compliance_errors)
    return ComplianceEvent(WebhookEventType.ORDER_REJECTED, data)


def override_approved(transaction: Transaction) -> ComplianceEvent:
    data = _transaction_summary(transaction)
    decision = transaction.override_decision
    if decision is not None:
        data["approvedBy"] = decision.decided_by
        data["approvedAt"] = decision.decided_at.isoformat()
        data["justification"] = decision.justification
    data["overriddenCodes"] = sorted({v.code for v in transaction.violations})
    return ComplianceEvent(WebhookEventType.OVERRIDE_APPROVED, data)


def licence_expiring(expiring: ExpiringLicence, as_of: date) -> ComplianceEvent:
    licence = expiring.licence
    return ComplianceEvent(
        WebhookEventType.LICENCE_EXPIRING,
        {
            "licenceId": str(licence.licence_id),
            "licenceNumber": licence.licence_number,
            "licenceType": licence.licence_type,
            "holderType": licence.holder_type.value,
            "holderId": licence.holder_id,
            "expiryDate": licence.expiry_date.isoformat() if licence.expiry_date else None,
            "daysUntilExpiry": expiring.days_until_expiry,
            "warningWindowDays": expiring.window_days,
            "asOf": as_of.isoformat(),
        },
    )


def validation_events(transaction: Transaction) -> tuple[ComplianceEvent, ...]:
    """Events for a freshly validated transaction."""
    events = [compliance_status_changed(transaction)]
    if transaction.can_proceed:
        events.append(order_approved(transaction))
    return tuple(events)
