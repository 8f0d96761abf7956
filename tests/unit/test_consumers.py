"""
Test suite for app/consumers

Coverage targets:
- Idempotency cache (LRU bounds, recording only after success)
- Audit sink records and JSON-lines output
- Notifier rendering, log-only mode and signed webhook delivery
"""

import json

import httpx
import pytest

from app.consumers.audit import AuditSink
from app.consumers.base import Consumer, IdempotencyCache
from app.consumers.notifier import Notifier, generate_signature
from app.events.relay import EventRelay
from app.events.router import EventRouter
from app.models.changes import ChangeKind
from core.exceptions import ConsumerFailure


def event_for(change):
    async def unused(entries):
        raise AssertionError("not called")

    entry = EventRelay(unused, event_bus_name="TestBus").build_entry(change)
    return EventRouter.to_domain_event(entry)


class CountingConsumer(Consumer):
    name = "counting"

    def __init__(self, fail_times: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.fail_times = fail_times
        self.calls = 0

    async def handle(self, event):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise RuntimeError("transient")


class TestIdempotencyCache:
    def test_membership(self):
        cache = IdempotencyCache(max_size=3)
        cache.add("a")
        assert "a" in cache
        assert "b" not in cache

    def test_evicts_least_recently_used(self):
        cache = IdempotencyCache(max_size=2)
        cache.add("a")
        cache.add("b")
        assert "a" in cache  # refreshes a
        cache.add("c")

        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            IdempotencyCache(max_size=0)


class TestConsumerBase:
    @pytest.mark.asyncio
    async def test_duplicate_event_is_skipped(self, change_factory):
        consumer = CountingConsumer()
        event = event_for(change_factory())

        await consumer(event)
        await consumer(event)

        assert consumer.calls == 1
        assert consumer.duplicates == 1

    @pytest.mark.asyncio
    async def test_failed_event_is_processed_again(self, change_factory):
        consumer = CountingConsumer(fail_times=1)
        event = event_for(change_factory())

        with pytest.raises(ConsumerFailure):
            await consumer(event)
        await consumer(event)

        assert consumer.calls == 2
        assert consumer.handled == 1
        assert consumer.failures == 1

    @pytest.mark.asyncio
    async def test_eviction_allows_reprocessing(self, change_factory):
        consumer = CountingConsumer(idempotency_cache_size=1)
        first = event_for(change_factory(sequence=1))
        second = event_for(change_factory(sequence=2))

        await consumer(first)
        await consumer(second)
        await consumer(first)

        assert consumer.calls == 3


class TestAuditSink:
    @pytest.mark.asyncio
    async def test_records_change(self, change_factory):
        sink = AuditSink()
        change = change_factory(sequence=4, kind=ChangeKind.UPDATED)
        event = event_for(change)

        await sink(event)

        assert len(sink.records) == 1
        record = sink.records[0]
        assert record.event_id == event.event_id
        assert record.person_id == change.person_id
        assert record.change_kind == ChangeKind.UPDATED
        assert record.new_image == change.new_image

    @pytest.mark.asyncio
    async def test_writes_json_lines(self, change_factory, temp_data_dir):
        path = temp_data_dir / "audit" / "audit.jsonl"
        sink = AuditSink(log_path=path)

        await sink(event_for(change_factory(sequence=1)))
        await sink(event_for(change_factory(sequence=2)))

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["new_image"]["firstName"] == "Tony"

    @pytest.mark.asyncio
    async def test_redelivery_audited_once(self, change_factory):
        sink = AuditSink()
        event = event_for(change_factory())

        await sink(event)
        await sink(event)

        assert len(sink.records) == 1

    @pytest.mark.asyncio
    async def test_malformed_detail_is_consumer_failure(self, change_factory):
        sink = AuditSink()
        event = event_for(change_factory()).model_copy(update={"detail": {"bogus": True}})

        with pytest.raises(ConsumerFailure):
            await sink(event)


class TestNotifier:
    def test_render(self, change_factory):
        notification = Notifier.render(event_for(change_factory(kind=ChangeKind.CREATED)))
        assert notification.subject == "Person Tony Stark created"
        assert "10880 Malibu Point" in notification.body

    @pytest.mark.asyncio
    async def test_log_only_mode(self, change_factory, caplog):
        notifier = Notifier()
        with caplog.at_level("INFO"):
            await notifier(event_for(change_factory()))

        assert len(notifier.sent) == 1
        assert "Sending email notification" in caplog.text

    def test_signature(self):
        signature = generate_signature(b'{"a": 1}', "secret")
        assert signature.startswith("sha256=")
        assert signature == generate_signature(b'{"a": 1}', "secret")
        assert signature != generate_signature(b'{"a": 2}', "secret")

    @pytest.mark.asyncio
    async def test_webhook_post_is_signed(self, change_factory):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = Notifier(
            webhook_url="https://hooks.example.com/persons",
            webhook_secret="s3cret",
            http_client=client,
        )
        event = event_for(change_factory())

        await notifier(event)
        await notifier.close()

        assert len(requests) == 1
        request = requests[0]
        assert request.headers["X-Event-ID"] == event.event_id
        assert request.headers["X-Webhook-Signature"] == generate_signature(
            request.content, "s3cret"
        )
        assert json.loads(request.content)["id"] == event.event_id

    @pytest.mark.asyncio
    async def test_webhook_error_status_is_failure(self, change_factory):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="down"))
        )
        notifier = Notifier(webhook_url="https://hooks.example.com/persons", http_client=client)

        with pytest.raises(ConsumerFailure):
            await notifier(event_for(change_factory()))
        assert notifier.sent == []
        await notifier.close()

    @pytest.mark.asyncio
    async def test_webhook_unreachable_is_failure(self, change_factory):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = Notifier(webhook_url="https://hooks.example.com/persons", http_client=client)

        with pytest.raises(ConsumerFailure):
            await notifier(event_for(change_factory()))
        await notifier.close()
