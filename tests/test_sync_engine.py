import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from onboarding.application import CustomerService
from onboarding.core.catalog import SalesRep
from onboarding.core.settings import Settings
from onboarding.core.validation import ValidationError
from onboarding.infrastructure import InMemoryRemoteStore, RemoteStoreError
from onboarding.workers import ManualScheduler, SyncWorker


class FlakyRemoteStore(InMemoryRemoteStore):
    def __init__(self, failures: int = 0) -> None:
        super().__init__()
        self.failures = failures

    async def write(self, entity_id, patch):
        if self.failures:
            self.failures -= 1
            raise RemoteStoreError("remote unavailable")
        return await super().write(entity_id, patch)


@pytest.fixture()
def remote():
    return InMemoryRemoteStore()


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def service(remote, scheduler):
    return CustomerService(
        remote,
        scheduler=scheduler,
        settings=Settings(machine_debounce_ms=500),
        sales_reps=[SalesRep(id="sr1", name="Jim Law"), SalesRep(id="sr2", name="John Altieri")],
    )


def test_worker_coalesces_pending_patches(remote, scheduler):
    worker = SyncWorker(remote, scheduler)
    worker.schedule("c1", {"a": 1}, 500)
    scheduler.advance(0.3)
    worker.schedule("c1", {"b": 2}, 500)
    worker.schedule("c1", {"a": 3}, 500)
    assert scheduler.pending == 1
    scheduler.advance(0.4)
    assert remote.write_count == 0
    scheduler.advance(0.2)
    assert remote.writes == [("c1", {"a": 3, "b": 2})]


def test_zero_debounce_sends_pending_patch_immediately(remote, scheduler):
    worker = SyncWorker(remote, scheduler)
    worker.schedule("c1", {"a": 1}, 500)
    worker.schedule("c1", {"b": 2}, 0)
    assert remote.writes == [("c1", {"a": 1, "b": 2})]
    assert not worker.has_pending("c1")
    assert scheduler.advance(1) == 0


def test_worker_keeps_entities_independent(remote, scheduler):
    worker = SyncWorker(remote, scheduler)
    worker.schedule("c1", {"a": 1}, 500)
    worker.schedule("c2", {"a": 2}, 500)
    scheduler.advance(0.5)
    assert sorted(remote.writes) == [("c1", {"a": 1}), ("c2", {"a": 2})]


def test_mutate_updates_cache_and_writes(service, remote):
    record = service.mutate("c1", {"business_name": "Suds"})
    assert record.business_name == "Suds"
    assert service.get("c1").updated_at is not None
    entity_id, patch = remote.writes[-1]
    assert entity_id == "c1"
    assert patch["business_name"] == "Suds"
    assert "updated_at" in patch


def test_mutate_rejects_unknown_fields_without_changing_cache(service, remote):
    service.mutate("c1", {"business_name": "Suds"})
    with pytest.raises(ValidationError):
        service.mutate("c1", {"business_name": "Other", "nickname": "x"})
    with pytest.raises(ValidationError):
        service.mutate("c1", {"payment_term_months": 0})
    assert service.get("c1").business_name == "Suds"
    assert remote.write_count == 1


def test_hydrate_never_writes(service, remote, scheduler):
    record = service.hydrate_from_remote("c1", {"business_name": "Remote Wash", "unknown_column": 1})
    assert record.business_name == "Remote Wash"
    assert remote.write_count == 0
    assert scheduler.pending == 0
    assert service.worker.pending_ids() == []


def test_load_customer_hydrates_without_echo():
    remote = InMemoryRemoteStore({"c9": {"id": "c9", "business_name": "Loaded"}})
    loader = CustomerService(remote, scheduler=ManualScheduler(), sales_reps=[])
    record = asyncio.run(loader.load_customer("c9"))
    assert record.business_name == "Loaded"
    assert asyncio.run(loader.load_customer("missing")) is None
    assert remote.write_count == 0


def test_machine_edits_are_debounced_into_one_write(service, remote, scheduler):
    service.create_customer({"id": "c1", "business_name": "Suds"})
    writes_before = remote.write_count

    service.add_machine("c1", {"type": "washer"})
    scheduler.advance(0.3)
    service.add_machine("c1", {"type": "washer"})
    scheduler.advance(0.3)
    assert remote.write_count == writes_before

    scheduler.advance(0.3)
    assert remote.write_count == writes_before + 1
    _, patch = remote.writes[-1]
    assert [machine["machine_number"] for machine in patch["machines"]] == [1, 2]


def test_create_customer_seeds_defaults(service):
    record = service.create_customer({"business_name": "Suds", "monthly_recurring_fee": "100"})
    assert len(record.onboarding_token) == 8
    assert record.current_stage_id == "contract_setup"
    assert set(record.task_statuses.values()) == {"not_started"}
    assert record.payment_processors[0].type == "paystri"
    assert record.deal_amount == Decimal("4800")


def test_task_update_stamps_metadata_and_stage(service):
    service.create_customer({"id": "c1"})
    record = service.update_stage_tasks_status("c1", "contract_setup", "complete", "Dana")
    assert record.current_stage_id == "internal_kickoff"
    assert record.status == "in_progress"
    assert record.task_metadata["confirm_data"].updated_by == "Dana"

    record = service.update_task_status("c1", "send_welcome_packet", "in_progress", "")
    assert record.task_metadata["send_welcome_packet"].updated_by == "Unknown"
    assert record.current_stage_id == "contract_setup"


def test_unknown_task_is_rejected(service):
    with pytest.raises(ValidationError):
        service.update_task_status("c1", "no_such_task", "complete")


def test_sales_rep_split_flow(service):
    service.create_customer({"id": "c1", "deal_amount": "10000"})
    service.add_sales_rep("c1", "sr1")
    record = service.add_sales_rep("c1", "sr2")
    assert [item.commission_percent for item in record.sales_rep_assignments] == [Decimal("50"), Decimal("50")]
    service.set_commission_split("c1", "sr1", Decimal("60"))
    assert service.commission("c1").split_warning == "Commission splits add up to 110%, not 100%"
    with pytest.raises(ValidationError):
        service.add_sales_rep("c1", "sr404")


def test_paid_in_full_sets_paid_to_date(service):
    service.create_customer({"id": "c1", "deal_amount": "5000"})
    record = service.set_payment_status("c1", "paid_in_full")
    assert record.paid_to_date_amount == Decimal("5000")
    assert record.paid_date is not None


def test_renumber_swaps_through_service(service):
    service.create_customer({"id": "c1"})
    first = service.add_machine("c1", {"type": "washer"})
    second = service.add_machine("c1", {"type": "washer"})
    record = service.renumber_machine("c1", second.id, first.machine_number)
    numbers = {machine.id: machine.machine_number for machine in record.machines}
    assert numbers == {first.id: 2, second.id: 1}


def test_failed_write_lands_in_outbox_and_retries(scheduler, caplog):
    remote = FlakyRemoteStore(failures=1)
    service = CustomerService(remote, scheduler=scheduler, sales_reps=[])
    with caplog.at_level(logging.ERROR):
        service.mutate("c1", {"business_name": "Suds"})
    assert service.get("c1").business_name == "Suds"
    assert "c1" in service.worker.failed_writes
    assert "failed" in caplog.text

    assert asyncio.run(service.retry_failed()) == 1
    assert service.worker.failed_writes == {}
    assert asyncio.run(remote.read("c1"))["business_name"] == "Suds"


def test_outbox_gives_up_after_max_attempts(scheduler):
    remote = FlakyRemoteStore(failures=10)
    service = CustomerService(remote, scheduler=scheduler, settings=Settings(max_write_attempts=2), sales_reps=[])
    service.mutate("c1", {"business_name": "Suds"})
    assert service.worker.failed_writes["c1"].attempts == 1
    assert asyncio.run(service.retry_failed()) == 0
    assert service.worker.failed_writes == {}


def test_delete_mirrors_remote_and_drops_pending(service, remote, scheduler):
    service.create_customer({"id": "c1"})
    service.add_machine("c1", {"type": "dryer"})
    writes_before = remote.write_count

    assert asyncio.run(service.delete_customer("c1")) is True
    assert service.get("c1") is None
    assert remote.deletes == ["c1"]
    assert asyncio.run(remote.read("c1")) is None

    scheduler.advance(1)
    assert remote.write_count == writes_before


def test_flush_sends_pending_machine_writes(service, remote):
    service.create_customer({"id": "c1"})
    service.add_machine("c1", {"type": "washer"})
    writes_before = remote.write_count
    asyncio.run(service.flush())
    assert remote.write_count == writes_before + 1
    assert not service.worker.has_pending("c1")


def test_notes_and_payment_items(service):
    created = service.create_customer({"id": "c1"})
    assert service.find_by_token(created.onboarding_token).id == "c1"

    note = service.add_note("c1", "Called owner", "Dana")
    record = service.update_note("c1", note.id, "Called owner twice", "Lee")
    assert record.notes[0].is_edited
    assert record.notes[0].updated_by == "Lee"
    assert service.delete_note("c1", note.id).notes == []

    link = service.add_payment_link("c1", {"type": "full_payment", "link": "https://pay.example.com/1", "amount": "500"})
    updated = service.update_payment_link("c1", link.id, {"is_paid": True})
    assert updated.is_paid and updated.amount == Decimal("500")
    assert service.delete_payment_link("c1", link.id).payment_links == []

    processor = service.add_payment_processor("c1", {"type": "clover", "link": "https://clover.example.com"})
    assert len(service.get("c1").payment_processors) == 2
    with pytest.raises(ValidationError):
        service.update_payment_processor("c1", "missing", {"name": "x"})
    service.delete_payment_processor("c1", processor.id)
    assert [item.type for item in service.get("c1").payment_processors] == ["paystri"]


def test_reorder_machines_requires_every_id(service):
    service.create_customer({"id": "c1"})
    first = service.add_machine("c1", {"type": "washer"})
    second = service.add_machine("c1", {"type": "dryer"})
    record = service.reorder_machines("c1", [second.id, first.id])
    assert [machine.id for machine in record.machines] == [second.id, first.id]
    with pytest.raises(ValidationError):
        service.reorder_machines("c1", [first.id])


def test_progress_includes_completion_dates(service):
    service.create_customer({"id": "c1"})
    report = service.progress("c1")
    assert report["overall"] == 0
    assert report["projected_completion_date"] == report["effective_completion_date"]
    record = service.refresh_completion_estimate("c1")
    assert record.onboarding_dates.projected_completion_date is not None


def test_hydrated_naive_timestamps_do_not_break_reads(service):
    service.create_customer({"id": "a"})
    service.hydrate_from_remote(
        "b",
        {
            "created_at": "2024-01-01T00:00:00",
            "onboarding_dates": {"start_date": "2024-01-01T00:00:00", "estimated_completion_date": "2024-01-29T00:00:00"},
        },
    )
    assert [record.id for record in service.list_customers()] == ["b", "a"]
    assert service.progress("b")["overall"] == 0


def test_generic_mutate_rederives_deal_amount(service):
    service.update_financials("c1", {"monthly_recurring_fee": "100"})
    assert service.get("c1").deal_amount == Decimal("4800")
    record = service.mutate("c1", {"monthly_recurring_fee": "200"})
    assert record.deal_amount == Decimal("9600")
    record = service.mutate("c1", {"payment_term_months": 12})
    assert record.deal_amount == Decimal("2400")


def test_generic_mutate_stamps_task_metadata(service, remote):
    service.create_customer({"id": "c1"})
    statuses = {**service.get("c1").task_statuses, "confirm_data": "complete"}
    record = service.mutate("c1", {"task_statuses": statuses})
    assert list(record.task_metadata) == ["confirm_data"]
    assert record.task_metadata["confirm_data"].updated_by == "Unknown"
    assert record.current_stage_id == "contract_setup"
    assert record.status == "in_progress"
    _, patch = remote.writes[-1]
    assert "task_metadata" in patch and "current_stage_id" in patch


def test_debounced_write_without_event_loop_is_sent_inline():
    remote = InMemoryRemoteStore()
    service = CustomerService(remote, settings=Settings(machine_debounce_ms=500), sales_reps=[])
    machine = service.add_machine("c1", {"type": "washer"})
    assert machine.machine_number == 1
    assert remote.write_count == 1
    assert service.worker.pending_ids() == []


def test_failed_remote_delete_keeps_local_record(scheduler):
    class BrokenDeleteStore(InMemoryRemoteStore):
        async def delete(self, entity_id):
            raise RemoteStoreError("delete refused")

    remote = BrokenDeleteStore()
    service = CustomerService(remote, scheduler=scheduler, settings=Settings(machine_debounce_ms=500), sales_reps=[])
    service.create_customer({"id": "c1"})
    service.add_machine("c1", {"type": "washer"})

    with pytest.raises(RemoteStoreError):
        asyncio.run(service.delete_customer("c1"))
    assert service.get("c1") is not None
    assert service.worker.has_pending("c1")


def test_unexpected_store_errors_go_to_outbox(scheduler, caplog):
    class ExplodingStore(InMemoryRemoteStore):
        async def write(self, entity_id, patch):
            raise KeyError("column")

    service = CustomerService(ExplodingStore(), scheduler=scheduler, sales_reps=[])
    with caplog.at_level(logging.ERROR):
        record = service.mutate("c1", {"business_name": "Suds"})
    assert record.business_name == "Suds"
    assert "KeyError" in service.worker.failed_writes["c1"].last_error
    assert "Unexpected error writing customer c1" in caplog.text
