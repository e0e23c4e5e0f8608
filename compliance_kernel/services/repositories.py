"""
Repository protocols and in-memory implementations.

Responsibility:
    The engine's view of its collaborators: reference-data lookups,
    transaction state, webhook subscriptions and the alert sink.  Each is a
    ``Protocol`` so callers can plug in any backing store; the in-memory
    classes serve tests and embedded use.

Architecture position:
    Kernel > Services.  May import from domain/.

Failure modes:
    - Implementations signal data-access failures by raising
      ``RepositoryError``.  Services let it propagate.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Protocol
from uuid import UUID

from compliance_kernel.domain import webhook as webhook_domain
from compliance_kernel.domain.alerts import Alert
from compliance_kernel.domain.customer import Customer
from compliance_kernel.domain.events import WebhookEventType
from compliance_kernel.domain.licence import HolderType, Licence
from compliance_kernel.domain.substance import Substance
from compliance_kernel.domain.threshold import ThresholdRule
from compliance_kernel.domain.transaction import Transaction
from compliance_kernel.domain.webhook import WebhookSubscription


# =========================================================================
# Protocols
# =========================================================================


class SubstanceRepository(Protocol):
    def get(self, substance_code: str) -> Substance | None: ...


class ProductRepository(Protocol):
    def resolve_substance_code(self, item_number: str) -> str | None:
        """Substance code of a product, or None if it is not controlled."""
        ...


class CustomerRepository(Protocol):
    def get(self, account: str) -> Customer | None: ...


class LicenceRepository(Protocol):
    def list_for_holder(self, holder_type: HolderType, holder_id: str) -> tuple[Licence, ...]: ...

    def list_all(self) -> tuple[Licence, ...]: ...


class ThresholdRepository(Protocol):
    def list_effective(self, on: date) -> tuple[ThresholdRule, ...]: ...


class TransactionRepository(Protocol):
    def get(self, transaction_id: UUID) -> Transaction | None: ...

    def save(self, transaction: Transaction) -> None: ...

    def list_awaiting_override(self) -> tuple[Transaction, ...]: ...


class WebhookSubscriptionRepository(Protocol):
    def get(self, subscription_id: UUID) -> WebhookSubscription | None: ...

    def list_all(self) -> tuple[WebhookSubscription, ...]: ...

    def list_active_for(self, event_type: WebhookEventType) -> tuple[WebhookSubscription, ...]: ...

    def save(self, subscription: WebhookSubscription) -> None: ...

    def delete(self, subscription_id: UUID) -> bool: ...

    def record_success(self, subscription_id: UUID, at: datetime) -> WebhookSubscription | None:
        """Reset the failure counter; returns the stored record after the write."""
        ...

    def record_failure(self, subscription_id: UUID, at: datetime) -> WebhookSubscription | None:
        """Increment the failure counter; returns the stored record after the write."""
        ...


class AlertSink(Protocol):
    def raise_alert(self, alert: Alert) -> None: ...


# =========================================================================
# In-memory implementations
# =========================================================================


class InMemorySubstanceRepository:
    def __init__(self, substances: Iterable[Substance] = ()) -> None:
        self._by_code = {s.substance_code: s for s in substances}

    def add(self, substance: Substance) -> None:
        self._by_code[substance.substance_code] = substance

    def get(self, substance_code: str) -> Substance | None:
        return self._by_code.get(substance_code)


class InMemoryProductRepository:
    def __init__(self, mapping: dict[str, str] | None = None) -> None:
        self._mapping = dict(mapping or {})

    def add(self, item_number: str, substance_code: str) -> None:
        self._mapping[item_number] = substance_code

    def resolve_substance_code(self, item_number: str) -> str | None:
        return self._mapping.get(item_number)


class InMemoryCustomerRepository:
    def __init__(self, customers: Iterable[Customer] = ()) -> None:
        self._by_account = {c.account: c for c in customers}

    def add(self, customer: Customer) -> None:
        self._by_account[customer.account] = customer

    def get(self, account: str) -> Customer | None:
        return self._by_account.get(account)


class InMemoryLicenceRepository:
    def __init__(self, licences: Iterable[Licence] = ()) -> None:
        self._licences: dict[UUID, Licence] = {lic.licence_id: lic for lic in licences}

    def add(self, licence: Licence) -> None:
        self._licences[licence.licence_id] = licence

    def list_for_holder(self, holder_type: HolderType, holder_id: str) -> tuple[Licence, ...]:
        return tuple(
            lic for lic in self._licences.values()
            if lic.holder_type == holder_type and lic.holder_id == holder_id
        )

    def list_all(self) -> tuple[Licence, ...]:
        return tuple(self._licences.values())


class InMemoryThresholdRepository:
    def __init__(self, rules: Iterable[ThresholdRule] = ()) -> None:
        self._rules = list(rules)

    def add(self, rule: ThresholdRule) -> None:
        self._rules.append(rule)

    def list_effective(self, on: date) -> tuple[ThresholdRule, ...]:
        return tuple(r for r in self._rules if r.is_effective_on(on))


class InMemoryTransactionRepository:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Transaction] = {}

    def get(self, transaction_id: UUID) -> Transaction | None:
        return self._by_id.get(transaction_id)

    def save(self, transaction: Transaction) -> None:
        self._by_id[transaction.transaction_id] = transaction

    def list_awaiting_override(self) -> tuple[Transaction, ...]:
        return tuple(t for t in self._by_id.values() if t.requires_override)


class InMemoryWebhookSubscriptionRepository:
    def __init__(self, subscriptions: Iterable[WebhookSubscription] = ()) -> None:
        self._by_id: dict[UUID, WebhookSubscription] = {
            s.subscription_id: s for s in subscriptions
        }

    def get(self, subscription_id: UUID) -> WebhookSubscription | None:
        return self._by_id.get(subscription_id)

    def list_all(self) -> tuple[WebhookSubscription, ...]:
        return tuple(self._by_id.values())

    def list_active_for(self, event_type: WebhookEventType) -> tuple[WebhookSubscription, ...]:
        return tuple(s for s in self._by_id.values() if s.should_receive(event_type))

    def save(self, subscription: WebhookSubscription) -> None:
        self._by_id[subscription.subscription_id] = subscription

    def delete(self, subscription_id: UUID) -> bool:
        return self._by_id.pop(subscription_id, None) is not None

    def record_success(self, subscription_id: UUID, at: datetime) -> WebhookSubscription | None:
        current = self._by_id.get(subscription_id)
        if current is None:
            return None
        updated = webhook_domain.record_success(current, at)
        self._by_id[subscription_id] = updated
        return updated

    def record_failure(self, subscription_id: UUID, at: datetime) -> WebhookSubscription | None:
        current = self._by_id.get(subscription_id)
        if current is None:
            return None
        updated = webhook_domain.record_failure(current, at)
        self._by_id[subscription_id] = updated
        return updated


class InMemoryAlertSink:
    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    def raise_alert(self, alert: Alert) -> None:
        self.alerts.append(alert)
