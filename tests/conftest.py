"""
Pytest fixtures for the compliance kernel test suite.

Provides:
- Structured logging configuration and log capture
- A deterministic clock
- Reference-data builders (substances, licences, customers, transactions)
- In-memory repositories wired into the services
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from compliance_kernel.domain.clock import DeterministicClock
from compliance_kernel.domain.customer import BusinessCategory, Customer
from compliance_kernel.domain.licence import HolderType, Licence, SubstanceMapping
from compliance_kernel.domain.substance import (
    Classification,
    OpiumActList,
    PrecursorCategory,
    Substance,
)
from compliance_kernel.domain.transaction import (
    Transaction,
    TransactionDirection,
    TransactionLine,
    TransactionType,
)
from compliance_kernel.domain.values import Activity, ActivitySet
from compliance_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from compliance_kernel.services.repositories import (
    InMemoryAlertSink,
    InMemoryCustomerRepository,
    InMemoryLicenceRepository,
    InMemoryProductRepository,
    InMemorySubstanceRepository,
    InMemoryThresholdRepository,
    InMemoryTransactionRepository,
    InMemoryWebhookSubscriptionRepository,
)

CUSTOMER_ACCOUNT = "CUST-001"
COMPANY_HOLDER_ID = "PHARMA-NL"
TEST_SECRET = "s" * 40


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture compliance_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, compliance_service):
            compliance_service.validate(tx)
            logs = captured_logs()
            assert any(r["message"] == "transaction_validated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("compliance_kernel")
    previous_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2025, 6, 1, 9, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Reference-data builders
# =============================================================================


@pytest.fixture
def make_substance():
    def _make(
        code: str = "MORPH",
        name: str = "Morphine",
        opium_act_list: OpiumActList = OpiumActList.LIST_I,
        precursor_category: PrecursorCategory = PrecursorCategory.NONE,
        reclassifications=(),
    ) -> Substance:
        return Substance(
            substance_code=code,
            name=name,
            classification=Classification(opium_act_list, precursor_category),
            reclassifications=tuple(reclassifications),
        )

    return _make


@pytest.fixture
def make_licence():
    def _make(
        number: str = "LIC-001",
        substance_code: str = "MORPH",
        *,
        licence_type: str = "OPIUM_ACT_EXEMPTION",
        holder_type: HolderType = HolderType.CUSTOMER,
        holder_id: str = CUSTOMER_ACCOUNT,
        issue_date: date = date(2024, 1, 1),
        expiry_date: date | None = date(2026, 12, 31),
        grace_period_end: date | None = None,
        activities=(Activity.POSSESS, Activity.STORE, Activity.DISTRIBUTE),
        max_per_transaction: Decimal | None = None,
        max_per_period: Decimal | None = None,
        period=None,
        mappings=None,
        **kwargs,
    ) -> Licence:
        if mappings is None:
            mappings = (
                SubstanceMapping(
                    substance_code=substance_code,
                    max_quantity_per_transaction=max_per_transaction,
                    max_quantity_per_period=max_per_period,
                    period=period,
                ),
            )
        return Licence(
            licence_number=number,
            licence_type=licence_type,
            holder_type=holder_type,
            holder_id=holder_id,
            issuing_authority="Farmatec",
            issue_date=issue_date,
            permitted_activities=ActivitySet.of(*activities),
            expiry_date=expiry_date,
            grace_period_end=grace_period_end,
            substance_mappings=tuple(mappings),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_customer():
    def _make(
        account: str = CUSTOMER_ACCOUNT,
        category: BusinessCategory = BusinessCategory.MANUFACTURER,
        **kwargs,
    ) -> Customer:
        return Customer(
            account=account,
            name=f"Customer {account}",
            business_category=category,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_transaction():
    def _make(
        *lines: tuple,
        transaction_type: TransactionType = TransactionType.ORDER,
        direction: TransactionDirection = TransactionDirection.INTERNAL,
        customer_account: str = CUSTOMER_ACCOUNT,
        transaction_date: date = date(2025, 6, 1),
        **kwargs,
    ) -> Transaction:
        """Lines are (substance_code, quantity) pairs, numbered from 1."""
        if not lines:
            lines = (("MORPH", Decimal("10")),)
        return Transaction(
            external_reference="SO-1000",
            transaction_type=transaction_type,
            direction=direction,
            customer_account=customer_account,
            transaction_date=transaction_date,
            lines=tuple(
                TransactionLine(
                    line_number=i,
                    item_number=f"ITEM-{code}",
                    quantity=Decimal(str(quantity)),
                    substance_code=code,
                )
                for i, (code, quantity) in enumerate(lines, start=1)
            ),
            **kwargs,
        )

    return _make


# =============================================================================
# Repositories
# =============================================================================


@pytest.fixture
def substances():
    return InMemorySubstanceRepository()


@pytest.fixture
def products():
    return InMemoryProductRepository()


@pytest.fixture
def customers():
    return InMemoryCustomerRepository()


@pytest.fixture
def licences():
    return InMemoryLicenceRepository()


@pytest.fixture
def thresholds():
    return InMemoryThresholdRepository()


@pytest.fixture
def transactions():
    return InMemoryTransactionRepository()


@pytest.fixture
def subscriptions():
    return InMemoryWebhookSubscriptionRepository()


@pytest.fixture
def alert_sink():
    return InMemoryAlertSink()
