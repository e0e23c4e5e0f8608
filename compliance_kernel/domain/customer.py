"""
Customer eligibility (``compliance_kernel.domain.customer``).

Pure customer reference type and the eligibility checks run before any
line is examined.  A missing or suspended customer can never be
overridden; an unapproved customer or a lapsed GDP qualification can.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from compliance_kernel.domain.violations import (
    CustomerContext,
    Violation,
    ViolationType,
    make_violation,
)


class BusinessCategory(str, Enum):
    HOSPITAL_PHARMACY = "hospital_pharmacy"
    COMMUNITY_PHARMACY = "community_pharmacy"
    VETERINARIAN = "veterinarian"
    MANUFACTURER = "manufacturer"
    WHOLESALER_EU = "wholesaler_eu"
    WHOLESALER_NON_EU = "wholesaler_non_eu"
    RESEARCH_INSTITUTION = "research_institution"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CONDITIONALLY_APPROVED = "conditionally_approved"
    REJECTED = "rejected"


class GdpQualificationStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    CONDITIONALLY_APPROVED = "conditionally_approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


_APPROVED = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.CONDITIONALLY_APPROVED})
_GDP_QUALIFIED = frozenset({
    GdpQualificationStatus.APPROVED,
    GdpQualificationStatus.CONDITIONALLY_APPROVED,
})


@dataclass(frozen=True)
class Customer:
    """Compliance view of a customer account."""

    account: str
    name: str
    business_category: BusinessCategory
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED
    gdp_status: GdpQualificationStatus = GdpQualificationStatus.NOT_REQUIRED
    is_suspended: bool = False
    suspension_reason: str | None = None
    country: str | None = None

    @property
    def is_approved(self) -> bool:
        return self.approval_status in _APPROVED

    @property
    def is_gdp_qualified(self) -> bool:
        return self.gdp_status in _GDP_QUALIFIED


def check_customer(
    customer: Customer | None,
    account: str,
    gdp_required_categories: Iterable[BusinessCategory],
) -> tuple[Violation, ...]:
    """Eligibility findings for the transacting customer.

    A missing or suspended customer short-circuits the remaining checks.
    """
    if customer is None:
        return (
            make_violation(
                ViolationType.CUSTOMER_NOT_FOUND,
                f"Customer '{account}' not found",
                context=CustomerContext(customer_account=account),
            ),
        )

    context = CustomerContext(
        customer_account=customer.account,
        customer_name=customer.name,
        business_category=customer.business_category.value,
    )

    if customer.is_suspended:
        reason = customer.suspension_reason or "no reason recorded"
        return (
            make_violation(
                ViolationType.CUSTOMER_SUSPENDED,
                f"Customer '{customer.name}' is suspended: {reason}",
                context=context,
            ),
        )

    found: list[Violation] = []
    if not customer.is_approved:
        found.append(make_violation(
            ViolationType.CUSTOMER_NOT_APPROVED,
            f"Customer '{customer.name}' is not approved "
            f"(status: {customer.approval_status.value})",
            context=CustomerContext(
                customer_account=customer.account,
                customer_name=customer.name,
                business_category=customer.business_category.value,
                status=customer.approval_status.value,
            ),
        ))

    if (
        customer.business_category in frozenset(gdp_required_categories)
        and not customer.is_gdp_qualified
    ):
        found.append(make_violation(
            ViolationType.CUSTOMER_NOT_QUALIFIED,
            f"Customer '{customer.name}' is not GDP qualified "
            f"(status: {customer.gdp_status.value})",
            context=CustomerContext(
                customer_account=customer.account,
                customer_name=customer.name,
                business_category=customer.business_category.value,
                status=customer.gdp_status.value,
            ),
        ))
    return tuple(found)
