"""
compliance_kernel.services.notification_dispatcher -- Webhook delivery.

Responsibility:
    Fans a compliance event out to every active subscription for its type.
    Each delivery is signed, retried on the policy's backoff schedule and
    recorded against the subscription.  A subscription whose consecutive
    failed cycles reach the unhealthy threshold is deactivated and exactly
    one operator alert is raised for it.

Architecture position:
    Kernel > Services.  The only module in the kernel that performs network
    I/O.  Uses ``httpx.AsyncClient`` and asyncio for bounded fan-out.

Invariants enforced:
    - Deliveries to different subscribers are independent.  One slow or
      failing receiver never delays or fails another beyond the fan-out
      limit.
    - A delivery cycle records exactly one outcome: success resets the
      counter, exhaustion increments it.  Individual attempts are not
      counted.
    - Cancellation during a delivery (including a retry wait) propagates
      and records nothing.
    - ``publish`` never raises on delivery or bookkeeping errors; an
      undeliverable event must not fail the business operation that
      produced it.

    - Subscription repository calls are blocking and run on a single
      bookkeeping worker thread, never on the event loop.  Calls are
      serialized, so a store bound to one SQLAlchemy ``Session`` is never
      used by two deliveries at once.

Failure modes:
    - Receiver timeouts, transport errors and non-2xx responses are
      per-attempt failures handled by the retry loop.
    - Repository errors while recording an outcome are logged and reported
      as a failed ``DeliveryResult`` for that subscriber.
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, TypeVar
from uuid import UUID

import httpx

from compliance_kernel.domain import webhook
from compliance_kernel.domain.alerts import subscription_deactivated_alert
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.events import ComplianceEvent, WebhookEventType
from compliance_kernel.domain.webhook import (
    DeliveryPolicy,
    WebhookEnvelope,
    WebhookSubscription,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.services.repositories import (
    AlertSink,
    WebhookSubscriptionRepository,
)

logger = get_logger("services.webhooks")

Sleeper = Callable[[float], Awaitable[Any]]
T = TypeVar("T")


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one delivery cycle to one subscriber."""

    subscription_id: UUID
    integration_system_id: str
    callback_url: str
    success: bool
    attempts: int
    status_code: int | None = None
    error_message: str | None = None
    attempted_at: datetime | None = None
    completed_at: datetime | None = None
    deactivated: bool = False


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of fanning one event out to its subscribers."""

    event_id: UUID
    event_type: WebhookEventType
    results: tuple[DeliveryResult, ...] = ()

    @property
    def subscribers_notified(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


class WebhookDispatcher:
    """Signs, delivers and retries compliance events to subscribers."""

    def __init__(
        self,
        subscriptions: WebhookSubscriptionRepository,
        alerts: AlertSink,
        *,
        policy: DeliveryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._subscriptions = subscriptions
        self._alerts = alerts
        self._policy = policy or DeliveryPolicy()
        self._client = client
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._bookkeeping = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="webhook-bookkeeping"
        )

    def close(self) -> None:
        """Release the bookkeeping worker thread."""
        self._bookkeeping.shutdown(wait=True)

    async def _run_bookkeeping(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking repository call on the bookkeeping thread."""
        loop = asyncio.get_running_loop()
        context = contextvars.copy_context()
        return await loop.run_in_executor(
            self._bookkeeping, functools.partial(context.run, fn, *args)
        )

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self._policy.request_timeout_seconds
        ) as client:
            yield client

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def dispatch(
        self, event_type: WebhookEventType, data: dict[str, Any]
    ) -> DispatchResult:
        """Deliver one event to every active subscriber of its type."""
        envelope = WebhookEnvelope(
            event_type=event_type, timestamp=self._clock.now_utc(), data=data
        )
        with LogContext.bind(event_id=str(envelope.event_id)):
            subscribers = await self._run_bookkeeping(
                self._subscriptions.list_active_for, event_type
            )
            if not subscribers:
                logger.debug(
                    "webhook_no_subscribers", extra={"event_type": event_type.value}
                )
                return DispatchResult(envelope.event_id, event_type)

            semaphore = asyncio.Semaphore(self._policy.max_concurrent_deliveries)
            async with self._client_scope() as client:
                outcomes = await asyncio.gather(
                    *(
                        self._bounded(semaphore, client, subscription, envelope)
                        for subscription in subscribers
                    ),
                    return_exceptions=True,
                )

            results = tuple(
                self._as_result(subscription, outcome)
                for subscription, outcome in zip(subscribers, outcomes)
            )
            dispatch = DispatchResult(envelope.event_id, event_type, results)
            logger.info(
                "webhook_event_dispatched",
                extra={
                    "event_type": event_type.value,
                    "subscribers": dispatch.subscribers_notified,
                    "succeeded": dispatch.success_count,
                    "failed": dispatch.failure_count,
                },
            )
            return dispatch

    async def publish(
        self, events: Iterable[ComplianceEvent]
    ) -> tuple[DispatchResult, ...]:
        """Dispatch events in order, logging rather than raising on errors."""
        dispatched: list[DispatchResult] = []
        for event in events:
            try:
                dispatched.append(await self.dispatch(event.event_type, event.data))
            except Exception:
                logger.exception(
                    "webhook_publish_failed",
                    extra={"event_type": event.event_type.value},
                )
        return tuple(dispatched)

    def _as_result(
        self, subscription: WebhookSubscription, outcome: DeliveryResult | BaseException
    ) -> DeliveryResult:
        if isinstance(outcome, DeliveryResult):
            return outcome
        if isinstance(outcome, asyncio.CancelledError):
            error = "Delivery cancelled"
        else:
            logger.error(
                "webhook_delivery_error",
                extra={
                    "subscription_id": str(subscription.subscription_id),
                    "error_type": type(outcome).__name__,
                    "error": str(outcome),
                },
            )
            error = f"{type(outcome).__name__}: {outcome}"
        return DeliveryResult(
            subscription_id=subscription.subscription_id,
            integration_system_id=subscription.integration_system_id,
            callback_url=subscription.callback_url,
            success=False,
            attempts=0,
            error_message=error,
        )

    async def _bounded(
        self,
        semaphore: asyncio.Semaphore,
        client: httpx.AsyncClient,
        subscription: WebhookSubscription,
        envelope: WebhookEnvelope,
    ) -> DeliveryResult:
        async with semaphore:
            return await self.deliver(subscription, envelope, client)

    # ------------------------------------------------------------------
    # Single subscriber
    # ------------------------------------------------------------------

    async def deliver(
        self,
        subscription: WebhookSubscription,
        envelope: WebhookEnvelope,
        client: httpx.AsyncClient,
    ) -> DeliveryResult:
        """
        One delivery cycle: the initial attempt plus the policy's retries.

        Returns on the first 2xx.  After the last failed attempt the
        failure is recorded and the circuit breaker is evaluated.
        """
        with LogContext.bind(subscription_id=str(subscription.subscription_id)):
            attempted_at = self._clock.now_utc()
            body = envelope.serialize()
            headers = envelope.headers(subscription.secret_key)
            status_code: int | None = None
            error: str | None = None

            for attempt in range(1, self._policy.max_attempts + 1):
                if attempt > 1:
                    delay = self._policy.retry_delays_seconds[attempt - 2]
                    logger.info(
                        "webhook_retry_scheduled",
                        extra={"attempt": attempt, "delay_seconds": delay},
                    )
                    await self._sleep(delay)

                status_code, error = await self._attempt(
                    client, subscription.callback_url, body, headers
                )
                if error is None:
                    completed_at = self._clock.now_utc()
                    await self._run_bookkeeping(
                        self._subscriptions.record_success,
                        subscription.subscription_id,
                        completed_at,
                    )
                    logger.info(
                        "webhook_delivered",
                        extra={
                            "event_type": envelope.event_type.value,
                            "attempt": attempt,
                            "status_code": status_code,
                        },
                    )
                    return DeliveryResult(
                        subscription_id=subscription.subscription_id,
                        integration_system_id=subscription.integration_system_id,
                        callback_url=subscription.callback_url,
                        success=True,
                        attempts=attempt,
                        status_code=status_code,
                        attempted_at=attempted_at,
                        completed_at=completed_at,
                    )

                logger.warning(
                    "webhook_attempt_failed",
                    extra={
                        "attempt": attempt,
                        "max_attempts": self._policy.max_attempts,
                        "status_code": status_code,
                        "error": error,
                    },
                )

            completed_at = self._clock.now_utc()
            deactivated = await self._run_bookkeeping(
                self._record_exhausted, subscription.subscription_id, completed_at
            )
            return DeliveryResult(
                subscription_id=subscription.subscription_id,
                integration_system_id=subscription.integration_system_id,
                callback_url=subscription.callback_url,
                success=False,
                attempts=self._policy.max_attempts,
                status_code=status_code,
                error_message=error,
                attempted_at=attempted_at,
                completed_at=completed_at,
                deactivated=deactivated,
            )

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        url: str,
        body: str,
        headers: dict[str, str],
    ) -> tuple[int | None, str | None]:
        """POST once; returns (status code, error) where error None means 2xx."""
        try:
            response = await client.post(
                url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self._policy.request_timeout_seconds,
            )
        except httpx.TimeoutException:
            return None, "Request timed out"
        except httpx.HTTPError as exc:
            return None, str(exc) or type(exc).__name__
        if response.is_success:
            return response.status_code, None
        return response.status_code, f"HTTP {response.status_code}"

    def _record_exhausted(self, subscription_id: UUID, at: datetime) -> bool:
        """
        Record a failed cycle; deactivate and alert on crossing the threshold.

        Runs on the bookkeeping thread, so the read-then-write against the
        subscription row is never interleaved with another delivery's.
        """
        updated = self._subscriptions.record_failure(subscription_id, at)
        logger.warning(
            "webhook_delivery_exhausted",
            extra={
                "failed_attempts": updated.failed_attempts if updated else None,
            },
        )
        if (
            updated is None
            or not updated.is_active
            or not updated.is_unhealthy(self._policy.unhealthy_failure_threshold)
        ):
            return False

        deactivated = webhook.deactivate(updated, at)
        self._subscriptions.save(deactivated)
        alert = subscription_deactivated_alert(deactivated, at)
        self._alerts.raise_alert(alert)
        logger.error(
            "webhook_subscription_deactivated",
            extra={
                "failed_attempts": deactivated.failed_attempts,
                "callback_url": deactivated.callback_url,
                "alert_id": str(alert.alert_id),
            },
        )
        return True
