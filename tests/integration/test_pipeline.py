"""
End-to-end tests: record store -> change stream -> poller -> relay -> router -> consumers.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from app.api.main import create_app
from app.container import build_container
from app.events.relay import build_event_id
from app.models.changes import ChangeKind
from core.exceptions import ValidationError

pytestmark = pytest.mark.integration


async def wait_for(predicate, timeout: float = 3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestPipeline:
    @pytest.mark.asyncio
    async def test_create_then_update_reaches_both_consumers(self, test_settings, tony_fields):
        container = build_container(test_settings)
        await container.start()
        try:
            person_id = container.service.create_person(tony_fields)
            container.service.update_person(
                person_id, dict(tony_fields, address="Stark Tower")
            )

            await wait_for(lambda: len(container.audit.records) == 2)
            await wait_for(lambda: len(container.notifier.sent) == 2)
        finally:
            await container.stop()

        audit = container.audit.records
        assert [r.change_kind for r in audit] == [ChangeKind.CREATED, ChangeKind.UPDATED]
        assert audit[0].person_id == person_id
        assert audit[0].new_image.first_name == "Tony"
        assert audit[1].new_image.address == "Stark Tower"
        assert audit[0].sequence_number < audit[1].sequence_number
        assert [n.event_id for n in container.notifier.sent] == [r.event_id for r in audit]

    @pytest.mark.asyncio
    async def test_failed_insert_produces_no_events(self, test_settings, tony_fields):
        container = build_container(test_settings)
        await container.start()
        try:
            del tony_fields["lastName"]
            with pytest.raises(ValidationError):
                container.service.create_person(tony_fields)
            await container.poller.poll_once()
            await container.router.join()
        finally:
            await container.stop()

        assert container.audit.records == []
        assert container.notifier.sent == []

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_block_notifier(self, test_settings, tony_fields):
        container = build_container(test_settings)

        async def audit_store_down(event):
            raise RuntimeError("audit store down")

        container.audit.handle = audit_store_down
        await container.start()
        try:
            container.service.create_person(tony_fields)
            await wait_for(lambda: len(container.notifier.sent) == 1)
            await wait_for(lambda: len(container.router.dead_letters) == 1)
        finally:
            await container.stop()

        letter = container.router.dead_letters.list()[0]
        assert letter.subscription == "audit"
        assert letter.attempts == test_settings.DELIVERY_MAX_ATTEMPTS
        assert letter.event.event_id == container.notifier.sent[0].event_id

    @pytest.mark.asyncio
    async def test_batch_retry_keeps_event_ids_and_consumers_dedupe(self, test_settings, tony_fields):
        container = build_container(test_settings)
        await container.router.start()
        try:
            person_id = container.service.create_person(tony_fields)
            shard_id = container.stream.shard_for(person_id)
            batch = container.stream.get_records(shard_id)

            first = await container.relay.handle_batch(batch)
            second = await container.relay.handle_batch(batch)
            await container.router.join()
        finally:
            await container.stop()

        change = batch[0]
        expected = build_event_id(change.person_id, change.sequence_number)
        assert first.event_ids == second.event_ids == [expected]
        # Delivered twice, processed once
        assert len(container.audit.records) == 1
        assert container.audit.duplicates == 1
        assert len(container.notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_router_outage_leaves_checkpoint_then_recovers(self, test_settings, tony_fields):
        container = build_container(test_settings)
        person_id = container.service.create_person(tony_fields)
        shard_id = container.stream.shard_for(person_id)

        # Router not started: every publish fails, the batch stays unacknowledged
        assert await container.poller.poll_once() == 0
        assert container.poller.checkpoint(shard_id) is None

        await container.router.start()
        try:
            assert await container.poller.poll_once() == 1
            await container.router.join()
        finally:
            await container.stop()

        assert len(container.audit.records) == 1


class TestPipelineOverHttp:
    def test_tony_stark_scenario(self, test_settings):
        payload = {
            "firstName": "Tony",
            "lastName": "Stark",
            "address": "123 Main St",
            "phoneNumber": "1234567890",
        }
        app = create_app(test_settings)
        container = app.state.container

        with TestClient(app) as client:
            response = client.post("/persons", json=payload)
            assert response.status_code == 200
            person_id = response.json()["personId"]

            response = client.get(f"/persons/{person_id}")
            assert response.status_code == 200
            assert response.json() == {"personId": person_id, **payload}

            updated = dict(payload, phoneNumber="0987654321")
            assert client.put(f"/persons/{person_id}", json=updated).status_code == 200
            assert client.get(f"/persons/{person_id}").json() == {"personId": person_id, **updated}

            deadline = time.monotonic() + 3.0
            while len(container.notifier.sent) < 2 and time.monotonic() < deadline:
                time.sleep(0.01)

        records = container.audit.records
        assert [r.change_kind for r in records] == [ChangeKind.CREATED, ChangeKind.UPDATED]
        assert all(r.person_id == person_id for r in records)
        assert records[0].new_image.to_item() == {"personId": person_id, **payload}
        assert records[1].new_image.to_item() == {"personId": person_id, **updated}
        assert len(container.notifier.sent) == 2
