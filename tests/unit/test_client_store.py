"""
Test Client Store

Unit tests for loading, merging updates, persistence failures and imports.
"""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from crm.db.client_store import (
    ClientNotFoundError,
    ClientStore,
    StorageNotConnectedError,
    StorageWriteError,
)
from crm.db.models import Budget, BudgetItem, ClientStatus, Product, WhatsAppStatus


UTC = timezone.utc


def load_store(fake_redis, saved) -> ClientStore:
    fake_redis.data["legacy_clients"] = saved if isinstance(saved, str) else json.dumps(saved)
    store = ClientStore(redis_client=fake_redis, storage_key="legacy_clients")
    asyncio.run(store.load())
    return store


class TestLoad:
    """Tests for reading saved client arrays."""

    def test_missing_key_starts_empty(self, store):
        assert store.get_all() == []

    def test_older_records_get_defaults(self, fake_redis):
        store = load_store(fake_redis, [{
            "id": "c1",
            "companyName": "Ferreteria Sur",
            "phoneNumber": "1155551234",
            "nextFollowUpDate": "2025-01-10T12:00:00.000Z",
            "isPaused": None,
            "status": None
        }])

        client = store.get("c1")
        assert client.company_name == "Ferreteria Sur"
        assert client.next_follow_up_date == datetime(2025, 1, 10, 12, 0, tzinfo=UTC)
        assert client.is_paused is False
        assert client.paused_time_left is None
        assert client.status == ClientStatus.ACTIVE
        assert client.whats_app_status == WhatsAppStatus.UNKNOWN
        assert client.country_code == "+54"
        assert client.follow_ups == []

    def test_paused_without_snapshot_is_repaired(self, fake_redis):
        store = load_store(fake_redis, [
            {"id": "p1", "isPaused": True},
            {"id": "p2", "isPaused": False, "pausedTimeLeft": 5000},
        ])

        assert store.get("p1").paused_time_left == 0
        assert store.get("p2").paused_time_left is None

    def test_empty_date_string_is_no_follow_up(self, fake_redis):
        store = load_store(fake_redis, [{"id": "c1", "nextFollowUpDate": ""}])
        assert store.get("c1").next_follow_up_date is None

    def test_malformed_json_starts_empty(self, fake_redis):
        store = load_store(fake_redis, "{not json")
        assert store.get_all() == []

    def test_non_array_starts_empty(self, fake_redis):
        store = load_store(fake_redis, {"id": "c1"})
        assert store.get_all() == []

    def test_invalid_record_is_skipped(self, fake_redis):
        store = load_store(fake_redis, [
            {"id": "good", "companyName": "Good"},
            {"id": "bad", "rating": 99},
        ])
        assert [c.id for c in store.get_all()] == ["good"]

    def test_read_failure_starts_empty(self, fake_redis):
        fake_redis.fail_reads = True
        store = ClientStore(redis_client=fake_redis, storage_key="test_clients")
        assert asyncio.run(store.load()) == 0
        assert store.get_all() == []

    def test_use_before_load(self, fake_redis):
        store = ClientStore(redis_client=fake_redis)
        with pytest.raises(StorageNotConnectedError):
            store.get_all()

    def test_load_without_connection(self):
        with pytest.raises(StorageNotConnectedError):
            asyncio.run(ClientStore().load())


class TestConnection:
    """Tests for connect and close."""

    def test_connect_with_existing_client_is_noop(self, store, fake_redis):
        asyncio.run(store.connect("redis://unused:6379/0"))
        assert store.redis_client is fake_redis

    def test_close(self, store, fake_redis):
        asyncio.run(store.close())
        assert fake_redis.closed is True
        assert store.redis_client is None


class TestCreate:
    """Tests for create."""

    def test_create_persists_camel_case_array(self, store, fake_redis):
        client = asyncio.run(store.create(company_name="Acme SA", phone_number="123"))

        saved = json.loads(fake_redis.data["test_clients"])
        assert len(saved) == 1
        assert saved[0]["id"] == client.id
        assert saved[0]["companyName"] == "Acme SA"
        assert saved[0]["nextFollowUpDate"] is None
        assert saved[0]["isPaused"] is False
        assert saved[0]["pausedTimeLeft"] is None
        assert saved[0]["status"] == "active"

    def test_create_ignores_follow_up_fields(self, store):
        client = asyncio.run(store.create(
            id="chosen",
            company_name="Acme SA",
            next_follow_up_date=datetime(2025, 1, 1, tzinfo=UTC),
            isPaused=True,
            status="suspended"
        ))

        assert client.id != "chosen"
        assert client.next_follow_up_date is None
        assert client.is_paused is False
        assert client.status == ClientStatus.ACTIVE

    def test_create_adds_empty_note(self, create_client):
        client = create_client()
        assert len(client.notes) == 1
        assert client.notes[0].content == ""

    def test_returned_records_are_copies(self, store, create_client):
        client = create_client()
        client.company_name = "Changed locally"
        assert store.get(client.id).company_name == "Acme SA"


class TestUpdate:
    """Tests for update and update_where."""

    def test_merge_keeps_other_fields(self, store, create_client):
        client = create_client(industry="Retail")
        asyncio.run(store.update(client.id, company_name="Acme Group"))
        asyncio.run(store.update(client.id, rating=4))

        current = store.get(client.id)
        assert current.company_name == "Acme Group"
        assert current.industry == "Retail"
        assert current.rating == 4

    def test_concurrent_updates_touch_disjoint_fields(self, store, create_client):
        client = create_client()

        async def scenario():
            await asyncio.gather(
                store.update(client.id, status=ClientStatus.SUSPENDED),
                store.update(client.id, company_name="Renamed"),
            )

        asyncio.run(scenario())

        current = store.get(client.id)
        assert current.status == ClientStatus.SUSPENDED
        assert current.company_name == "Renamed"

    def test_id_is_immutable(self, store, create_client):
        client = create_client()
        with pytest.raises(ValueError):
            asyncio.run(store.update(client.id, id="other"))

    def test_unknown_field(self, store, create_client):
        client = create_client()
        with pytest.raises(ValueError):
            asyncio.run(store.update(client.id, favourite_colour="blue"))

    def test_unknown_client(self, store):
        with pytest.raises(ClientNotFoundError):
            asyncio.run(store.update("missing", company_name="X"))

    def test_write_failure_keeps_update_in_memory(self, store, fake_redis, create_client):
        client = create_client()
        fake_redis.fail_writes = True

        with pytest.raises(StorageWriteError):
            asyncio.run(store.update(client.id, company_name="Unsaved"))

        assert store.get(client.id).company_name == "Unsaved"

        fake_redis.fail_writes = False
        asyncio.run(store.update(client.id, rating=2))

        saved = json.loads(fake_redis.data["test_clients"])[0]
        assert saved["companyName"] == "Unsaved"
        assert saved["rating"] == 2

    def test_update_where_condition_false(self, store, fake_redis, create_client):
        client = create_client()
        writes = fake_redis.write_count

        result = asyncio.run(store.update_where(
            client.id,
            lambda current: current.status == ClientStatus.SUSPENDED,
            company_name="Never"
        ))

        assert result is None
        assert store.get(client.id).company_name == "Acme SA"
        assert fake_redis.write_count == writes

    def test_update_where_condition_true(self, store, create_client):
        client = create_client()
        result = asyncio.run(store.update_where(
            client.id,
            lambda current: current.status == ClientStatus.ACTIVE,
            status=ClientStatus.SUSPENDED
        ))
        assert result.status == ClientStatus.SUSPENDED


    def test_update_with_builds_from_current_record(self, store, create_client):
        client = create_client(rating=1)

        updated, changed = asyncio.run(store.update_with(
            client.id,
            lambda current: {'rating': current.rating + 2}
        ))

        assert changed is True
        assert updated.rating == 3
        assert store.get(client.id).rating == 3

    def test_update_with_none_does_not_write(self, store, fake_redis, create_client):
        client = create_client()
        writes = fake_redis.write_count

        current, changed = asyncio.run(store.update_with(client.id, lambda current: None))

        assert changed is False
        assert current.id == client.id
        assert fake_redis.write_count == writes

    def test_update_with_rejects_id(self, store, create_client):
        client = create_client()
        with pytest.raises(ValueError):
            asyncio.run(store.update_with(client.id, lambda current: {'id': 'other'}))

    def test_update_with_unknown_client(self, store):
        with pytest.raises(ClientNotFoundError):
            asyncio.run(store.update_with("missing", lambda current: {}))


class TestDelete:
    """Tests for delete."""

    def test_delete(self, store, create_client):
        client = create_client()
        asyncio.run(store.delete(client.id))
        with pytest.raises(ClientNotFoundError):
            store.get(client.id)

    def test_delete_unknown(self, store):
        with pytest.raises(ClientNotFoundError):
            asyncio.run(store.delete("missing"))


class TestImport:
    """Tests for import_clients phone dedup."""

    def test_skips_existing_phone(self, store, create_client):
        create_client(country_code="+54", phone_number="11 5555-1234")

        created = asyncio.run(store.import_clients([
            {"companyName": "Same phone", "countryCode": "+54", "phoneNumber": "1155551234"},
            {"companyName": "New phone", "countryCode": "+54", "phoneNumber": "1166667777"},
        ]))

        assert [c.company_name for c in created] == ["New phone"]
        assert len(store.get_all()) == 2

    def test_skips_duplicates_within_batch(self, store):
        created = asyncio.run(store.import_clients([
            {"company_name": "First", "phone_number": "1144443333"},
            {"company_name": "Second", "phone_number": "1144443333"},
        ]))
        assert [c.company_name for c in created] == ["First"]

    def test_clients_without_phone_are_all_imported(self, store):
        created = asyncio.run(store.import_clients([
            {"company_name": "No phone A"},
            {"company_name": "No phone B"},
        ]))
        assert len(created) == 2

    def test_imported_clients_have_no_follow_up(self, store):
        created = asyncio.run(store.import_clients([
            {"company_name": "Imported", "nextFollowUpDate": "2025-01-01T00:00:00Z"},
        ]))
        assert created[0].next_follow_up_date is None

    def test_nothing_new_does_not_write(self, store, fake_redis):
        writes = fake_redis.write_count
        asyncio.run(store.import_clients([]))
        assert fake_redis.write_count == writes


class TestBudgetsAndPartition:
    """Tests for budgets and the active/suspended split."""

    def test_add_and_delete_budget(self, store, create_client):
        client = create_client()
        budget = Budget.build(
            client_id=client.id,
            client_name=client.company_name,
            items=[BudgetItem(product=Product(name="Valve", price=100.0), quantity=2)],
            discount=10
        )

        with_budget = asyncio.run(store.add_budget(client.id, budget))
        assert [b.id for b in with_budget.budgets] == [budget.id]
        assert with_budget.budgets[0].subtotal == pytest.approx(200.0)
        assert with_budget.budgets[0].total == pytest.approx(180.0)

        without = asyncio.run(store.delete_budget(client.id, budget.id))
        assert without.budgets == []

    def test_delete_unknown_budget_is_noop(self, store, create_client):
        client = create_client()
        result = asyncio.run(store.delete_budget(client.id, "budget-missing"))
        assert result.budgets == []

    def test_partition_by_status(self, store, create_client):
        active = create_client(company_name="Active")
        suspended = create_client(company_name="Suspended")
        asyncio.run(store.update(suspended.id, status=ClientStatus.SUSPENDED))

        active_list, suspended_list = store.partition_by_status()

        assert [c.id for c in active_list] == [active.id]
        assert [c.id for c in suspended_list] == [suspended.id]
