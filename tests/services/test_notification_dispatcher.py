"""
Tests for WebhookDispatcher.

HTTP is served by ``httpx.MockTransport`` and retry waits go through an
injected sleeper, so no test touches the network or the wall clock.
"""

import asyncio
import threading
import time

import httpx
import pytest

from compliance_kernel.domain.events import ComplianceEvent, EventTypeSet, WebhookEventType
from compliance_kernel.domain.webhook import (
    DeliveryPolicy,
    WebhookEnvelope,
    WebhookSubscription,
    verify_signature,
)
from compliance_kernel.exceptions import RepositoryError
from compliance_kernel.services import WebhookDispatcher

SECRET = "s" * 40
EVENT = WebhookEventType.ORDER_APPROVED
PAYLOAD = {"transactionId": "tx-1", "validationStatus": "passed"}


class Receiver:
    """Scripted HTTP receiver: answers with the queued status codes, then 200."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def subscription(subscriptions):
    sub = WebhookSubscription(
        integration_system_id="erp",
        event_types=EventTypeSet.of(EVENT, WebhookEventType.ORDER_REJECTED),
        callback_url="https://erp.example.com/hooks",
        secret_key=SECRET,
    )
    subscriptions.save(sub)
    return sub


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_dispatcher(subscriptions, alert_sink, clock, sleep):
    created: list[WebhookDispatcher] = []

    def _make(client, **kwargs):
        dispatcher = WebhookDispatcher(
            subscriptions, alert_sink, client=client, clock=clock, sleep=sleep, **kwargs
        )
        created.append(dispatcher)
        return dispatcher

    yield _make
    for dispatcher in created:
        dispatcher.close()


# ---------------------------------------------------------------------------
# Delivery and retries
# ---------------------------------------------------------------------------


class TestDelivery:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, make_dispatcher, subscription, subscriptions, clock):
        receiver = Receiver(200)
        async with _client(receiver) as client:
            result = await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        assert result.subscribers_notified == 1
        (delivery,) = result.results
        assert delivery.success
        assert delivery.attempts == 1
        assert delivery.status_code == 200
        assert subscriptions.get(subscription.subscription_id).last_success_at == clock.now_utc()

    @pytest.mark.asyncio
    async def test_success_on_fourth_attempt(self, make_dispatcher, subscription, subscriptions, sleep):
        receiver = Receiver(500, 503, 502, 200)
        async with _client(receiver) as client:
            result = await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        (delivery,) = result.results
        assert delivery.success
        assert delivery.attempts == 4
        assert sleep.delays == [10.0, 60.0, 300.0]
        assert subscriptions.get(subscription.subscription_id).failed_attempts == 0

    @pytest.mark.asyncio
    async def test_exhausted_cycle_counts_one_failure(
        self, make_dispatcher, subscription, subscriptions, alert_sink
    ):
        receiver = Receiver(500, 500, 500, 500)
        async with _client(receiver) as client:
            result = await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        (delivery,) = result.results
        assert not delivery.success
        assert delivery.attempts == 4
        assert delivery.error_message == "HTTP 500"
        assert len(receiver.requests) == 4
        stored = subscriptions.get(subscription.subscription_id)
        assert stored.failed_attempts == 1
        assert stored.is_active
        assert alert_sink.alerts == []

    @pytest.mark.asyncio
    async def test_timeout_and_transport_errors_are_retried(self, make_dispatcher, subscription):
        receiver = Receiver(
            httpx.ReadTimeout("slow receiver"),
            httpx.ConnectError("connection refused"),
            200,
        )
        async with _client(receiver) as client:
            (delivery,) = (await make_dispatcher(client).dispatch(EVENT, PAYLOAD)).results

        assert delivery.success
        assert delivery.attempts == 3

    @pytest.mark.asyncio
    async def test_timeout_message(self, make_dispatcher, subscription):
        policy = DeliveryPolicy(retry_delays_seconds=())
        receiver = Receiver(httpx.ReadTimeout("slow receiver"))
        async with _client(receiver) as client:
            (delivery,) = (
                await make_dispatcher(client, policy=policy).dispatch(EVENT, PAYLOAD)
            ).results

        assert delivery.error_message == "Request timed out"


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


class TestWireFormat:
    @pytest.mark.asyncio
    async def test_signature_verifies_against_body(self, make_dispatcher, subscription):
        receiver = Receiver(200)
        async with _client(receiver) as client:
            result = await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        (request,) = receiver.requests
        body = request.content.decode("utf-8")
        assert request.method == "POST"
        assert str(request.url) == subscription.callback_url
        assert verify_signature(body, request.headers["X-Webhook-Signature"], SECRET)
        assert request.headers["X-Webhook-Event"] == "OrderApproved"
        assert request.headers["X-Webhook-Id"] == str(result.event_id)
        assert '"data":{"transactionId":"tx-1","validationStatus":"passed"}' in body

    @pytest.mark.asyncio
    async def test_retries_resend_identical_body(self, make_dispatcher, subscription):
        receiver = Receiver(500, 200)
        async with _client(receiver) as client:
            await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        first, second = receiver.requests
        assert first.content == second.content
        assert first.headers["X-Webhook-Signature"] == second.headers["X-Webhook-Signature"]


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


class TestCircuitBreaker:
    """Three exhausted cycles deactivate the subscription and alert once."""

    @pytest.mark.asyncio
    async def test_deactivates_after_three_failed_cycles(
        self, make_dispatcher, subscription, subscriptions, alert_sink
    ):
        async with _client(Receiver(*[500] * 12)) as client:
            dispatcher = make_dispatcher(client)
            for _ in range(3):
                result = await dispatcher.dispatch(EVENT, PAYLOAD)

        assert result.results[0].deactivated
        stored = subscriptions.get(subscription.subscription_id)
        assert not stored.is_active
        assert stored.failed_attempts == 3
        (alert,) = alert_sink.alerts
        assert alert.target_entity_id == subscription.subscription_id
        assert alert.message == (
            "Webhook subscription deactivated after 3 consecutive delivery failures"
        )

    @pytest.mark.asyncio
    async def test_deactivated_subscription_receives_nothing(
        self, make_dispatcher, subscription, subscriptions, alert_sink
    ):
        receiver = Receiver(*[500] * 12)
        async with _client(receiver) as client:
            dispatcher = make_dispatcher(client)
            for _ in range(4):
                await dispatcher.dispatch(EVENT, PAYLOAD)

        assert len(receiver.requests) == 12
        assert len(alert_sink.alerts) == 1

    @pytest.mark.asyncio
    async def test_success_between_failures_resets(
        self, make_dispatcher, subscription, subscriptions
    ):
        policy = DeliveryPolicy(retry_delays_seconds=())
        receiver = Receiver(500, 500, 200, 500, 500)
        async with _client(receiver) as client:
            dispatcher = make_dispatcher(client, policy=policy)
            for _ in range(5):
                await dispatcher.dispatch(EVENT, PAYLOAD)

        stored = subscriptions.get(subscription.subscription_id)
        assert stored.is_active
        assert stored.failed_attempts == 2


# ---------------------------------------------------------------------------
# Fan-out and error isolation
# ---------------------------------------------------------------------------


class TestFanOut:
    @pytest.mark.asyncio
    async def test_no_subscribers(self, make_dispatcher, captured_logs):
        receiver = Receiver()
        async with _client(receiver) as client:
            result = await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        assert result.subscribers_notified == 0
        assert receiver.requests == []
        assert any(r["message"] == "webhook_no_subscribers" for r in captured_logs())

    @pytest.mark.asyncio
    async def test_other_event_types_not_delivered(self, make_dispatcher, subscription):
        receiver = Receiver()
        async with _client(receiver) as client:
            result = await make_dispatcher(client).dispatch(
                WebhookEventType.LICENCE_EXPIRING, {}
            )
        assert result.subscribers_notified == 0

    @pytest.mark.asyncio
    async def test_failing_receiver_does_not_affect_others(
        self, make_dispatcher, subscription, subscriptions
    ):
        healthy = WebhookSubscription(
            integration_system_id="wms",
            event_types=EventTypeSet.of(EVENT),
            callback_url="https://wms.example.com/hooks",
            secret_key=SECRET,
        )
        subscriptions.save(healthy)

        def handler(request):
            if request.url.host == "erp.example.com":
                return httpx.Response(500)
            return httpx.Response(204)

        policy = DeliveryPolicy(retry_delays_seconds=(), max_concurrent_deliveries=1)
        async with _client(handler) as client:
            result = await make_dispatcher(client, policy=policy).dispatch(EVENT, PAYLOAD)

        assert result.success_count == 1
        assert result.failure_count == 1
        by_system = {r.integration_system_id: r for r in result.results}
        assert by_system["wms"].success
        assert by_system["wms"].status_code == 204
        assert not by_system["erp"].success

    @pytest.mark.asyncio
    async def test_bookkeeping_runs_serially_off_the_event_loop(
        self, make_dispatcher, subscriptions
    ):
        for system in ("erp", "wms", "tms"):
            subscriptions.save(WebhookSubscription(
                integration_system_id=system,
                event_types=EventTypeSet.of(EVENT),
                callback_url=f"https://{system}.example.com/hooks",
                secret_key=SECRET,
            ))
        loop_thread = threading.get_ident()
        threads: set[int] = set()
        in_flight = 0
        peak = 0
        guard = threading.Lock()
        record_success = subscriptions.record_success

        def slow_record_success(subscription_id, at):
            nonlocal in_flight, peak
            with guard:
                in_flight += 1
                peak = max(peak, in_flight)
            threads.add(threading.get_ident())
            time.sleep(0.01)
            with guard:
                in_flight -= 1
            return record_success(subscription_id, at)

        subscriptions.record_success = slow_record_success
        async with _client(Receiver()) as client:
            result = await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        assert result.success_count == 3
        assert peak == 1
        assert loop_thread not in threads

    @pytest.mark.asyncio
    async def test_bookkeeping_error_becomes_failed_result(
        self, make_dispatcher, subscription, subscriptions, captured_logs
    ):
        def broken(subscription_id, at):
            raise RepositoryError("webhook_subscriptions", "database unavailable")

        subscriptions.record_success = broken
        async with _client(Receiver(200)) as client:
            result = await make_dispatcher(client).dispatch(EVENT, PAYLOAD)

        (delivery,) = result.results
        assert not delivery.success
        assert "database unavailable" in delivery.error_message
        assert any(r["message"] == "webhook_delivery_error" for r in captured_logs())


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_retry_wait_records_nothing(
        self, subscriptions, alert_sink, clock, subscription
    ):
        async def cancelled_sleep(delay):
            raise asyncio.CancelledError()

        envelope = WebhookEnvelope(EVENT, clock.now_utc(), PAYLOAD)
        async with _client(Receiver(500)) as client:
            dispatcher = WebhookDispatcher(
                subscriptions, alert_sink, client=client, clock=clock, sleep=cancelled_sleep
            )
            with pytest.raises(asyncio.CancelledError):
                await dispatcher.deliver(subscription, envelope, client)

        stored = subscriptions.get(subscription.subscription_id)
        assert stored.failed_attempts == 0
        assert stored.last_failure_at is None

    @pytest.mark.asyncio
    async def test_cancelled_delivery_reported_in_dispatch(
        self, subscriptions, alert_sink, clock, subscription
    ):
        async def cancelled_sleep(delay):
            raise asyncio.CancelledError()

        async with _client(Receiver(500)) as client:
            dispatcher = WebhookDispatcher(
                subscriptions, alert_sink, client=client, clock=clock, sleep=cancelled_sleep
            )
            (delivery,) = (await dispatcher.dispatch(EVENT, PAYLOAD)).results

        assert delivery.error_message == "Delivery cancelled"
        assert subscriptions.get(subscription.subscription_id).failed_attempts == 0


# ---------------------------------------------------------------------------
# Publish
# ---------------------------------------------------------------------------


class TestPublish:
    @pytest.mark.asyncio
    async def test_publishes_in_order(self, make_dispatcher, subscription):
        receiver = Receiver()
        async with _client(receiver) as client:
            dispatched = await make_dispatcher(client).publish([
                ComplianceEvent(WebhookEventType.ORDER_REJECTED, {"n": 1}),
                ComplianceEvent(EVENT, {"n": 2}),
            ])

        assert [d.event_type for d in dispatched] == [WebhookEventType.ORDER_REJECTED, EVENT]
        assert [r.headers["X-Webhook-Event"] for r in receiver.requests] == [
            "OrderRejected",
            "OrderApproved",
        ]

    @pytest.mark.asyncio
    async def test_publish_never_raises(self, make_dispatcher, subscriptions, captured_logs):
        def unavailable(event_type):
            raise RepositoryError("webhook_subscriptions", "database unavailable")

        subscriptions.list_active_for = unavailable
        async with _client(Receiver()) as client:
            dispatched = await make_dispatcher(client).publish([ComplianceEvent(EVENT, {})])

        assert dispatched == ()
        record = next(r for r in captured_logs() if r["message"] == "webhook_publish_failed")
        assert record["exc_code"] == "REPOSITORY_ERROR"

    @pytest.mark.asyncio
    async def test_no_client_needed_without_subscribers(self, subscriptions, alert_sink, clock):
        dispatcher = WebhookDispatcher(subscriptions, alert_sink, clock=clock)
        result = await dispatcher.dispatch(EVENT, PAYLOAD)
        assert result.subscribers_notified == 0
