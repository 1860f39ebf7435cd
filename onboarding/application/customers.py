"""Application service owning the customer cache and its remote sync."""
from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable

from pydantic import ValidationError as PydanticValidationError

from onboarding.core import allocator, ledger, progress
from onboarding.core.catalog import SalesRep, WorkflowCatalog, get_catalog, load_catalog, load_sales_reps
from onboarding.core.schema import (
    DEFAULT_PAYSTRI_LINK,
    CommissionBreakdown,
    CustomerNote,
    CustomerRecord,
    Machine,
    PaymentLink,
    PaymentProcessor,
    TaskMetadataEntry,
    TaskStatus,
)
from onboarding.core.settings import Settings
from onboarding.core.validation import ValidationError, validate_assignments, validate_machine_numbers
from onboarding.infrastructure import RemoteStore, RemoteStoreError, build_remote_store
from onboarding.workers import Scheduler, SyncWorker

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
TASK_STATUSES = {"not_started", "in_progress", "complete"}


def generate_onboarding_token(length: int = 8) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerService:
    """Coordinates customer use cases over an in-memory authoritative cache.

    Mutations update the cache synchronously and hand the patch to the
    :class:`SyncWorker`; hydration merges remote data without scheduling a
    write, which keeps load-then-render cycles from echoing back.
    """

    def __init__(
        self,
        remote: RemoteStore,
        *,
        scheduler: Scheduler | None = None,
        settings: Settings | None = None,
        catalog: WorkflowCatalog | None = None,
        sales_reps: Iterable[SalesRep] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or Settings()
        self._remote = remote
        self._catalog = get_catalog() if catalog is None else catalog
        self._sales_reps = {rep.id: rep for rep in (sales_reps if sales_reps is not None else load_sales_reps())}
        self._clock = clock
        self._cache: dict[str, CustomerRecord] = {}
        self._worker = SyncWorker(remote, scheduler, max_attempts=self._settings.max_write_attempts)

    @property
    def catalog(self) -> WorkflowCatalog:
        return self._catalog

    @property
    def worker(self) -> SyncWorker:
        return self._worker

    @property
    def sales_reps(self) -> list[SalesRep]:
        return list(self._sales_reps.values())

    # ------------------------------------------------------------------
    # cache primitives
    # ------------------------------------------------------------------
    def _merge(self, customer_id: str, patch: dict[str, Any]) -> CustomerRecord:
        current = self._cache.get(customer_id)
        base = current.model_dump() if current is not None else {"id": customer_id}
        data = {**base, **patch, "id": customer_id}
        try:
            return CustomerRecord.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc

    def _derive(self, customer_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Add the fields that follow from ``patch`` to it.

        Status maps edited without metadata get stamped entries and a fresh
        current stage; deal inputs always re-derive ``deal_amount``.
        """

        derived = dict(patch)
        if "task_statuses" in patch and "task_metadata" not in patch:
            if not isinstance(patch["task_statuses"], dict):
                raise ValidationError("task_statuses must be a mapping of task id to status")
            current = self._cache.get(customer_id) or CustomerRecord(id=customer_id)
            statuses = dict(patch["task_statuses"])
            previous = current.task_statuses
            changed = [task_id for task_id, status in statuses.items() if previous.get(task_id, "not_started") != status]
            for key, value in self._task_patch(current, statuses, changed, "Unknown").items():
                derived.setdefault(key, value)
        if _touches_deal_inputs(derived):
            preview = self._merge(customer_id, derived)
            derived["deal_amount"] = ledger.compute_deal_amount(ledger.deal_inputs_of(preview))
        return derived

    def mutate(self, customer_id: str, patch: dict[str, Any], debounce_ms: int | None = None) -> CustomerRecord:
        """Apply ``patch`` to the cached record and schedule its persistence.

        Nested collections are replaced wholesale. Unknown customer ids get
        a minimal record. Validation happens before the cache changes.
        """

        unknown = set(patch) - set(CustomerRecord.model_fields)
        if unknown:
            raise ValidationError(f"unknown customer fields: {', '.join(sorted(unknown))}")
        patch = self._derive(customer_id, patch)
        if "machines" in patch:
            try:
                machines = [Machine.model_validate(item) for item in patch["machines"]]
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc
            validate_machine_numbers(machines)
        if "sales_rep_assignments" in patch:
            record_preview = self._merge(customer_id, {"sales_rep_assignments": patch["sales_rep_assignments"]})
            validate_assignments(record_preview.sales_rep_assignments)

        stamped = {**patch, "updated_at": self._clock()}
        record = self._merge(customer_id, stamped)
        if customer_id not in self._cache and record.created_at is None:
            record = record.model_copy(update={"created_at": stamped["updated_at"]})
        self._cache[customer_id] = record

        wire = record.model_dump(mode="json", include=set(stamped) | {"id"})
        wire.pop("id", None)
        if debounce_ms is None:
            debounce_ms = self._settings.default_debounce_ms
        self._worker.schedule(customer_id, wire, debounce_ms)
        return record

    def hydrate_from_remote(self, customer_id: str, data: dict[str, Any]) -> CustomerRecord:
        """Merge remote state into the cache without scheduling a write."""

        record = self._merge(customer_id, data)
        self._cache[customer_id] = record
        return record

    def get(self, customer_id: str) -> CustomerRecord | None:
        return self._cache.get(customer_id)

    def require(self, customer_id: str) -> CustomerRecord:
        record = self._cache.get(customer_id)
        if record is None:
            record = CustomerRecord(id=customer_id)
            self._cache[customer_id] = record
        return record

    def list_customers(self) -> list[CustomerRecord]:
        return sorted(self._cache.values(), key=lambda item: item.created_at or datetime.min.replace(tzinfo=timezone.utc))

    def find_by_token(self, token: str) -> CustomerRecord | None:
        for record in self._cache.values():
            if record.onboarding_token == token:
                return record
        return None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def create_customer(self, data: dict[str, Any] | None = None) -> CustomerRecord:
        data = dict(data or {})
        customer_id = str(data.pop("id", None) or uuid.uuid4())
        now = self._clock()
        defaults: dict[str, Any] = {
            "onboarding_token": generate_onboarding_token(),
            "task_statuses": progress.default_task_statuses(self._catalog),
            "current_stage_id": self._catalog.stages[0].id if self._catalog.stages else None,
            "onboarding_dates": progress.default_onboarding_dates(now).model_dump(),
            "payment_processors": [
                {
                    "id": str(uuid.uuid4()),
                    "type": "paystri",
                    "name": "Paystri",
                    "link": DEFAULT_PAYSTRI_LINK,
                    "is_default": True,
                    "added_at": now,
                    "added_by": "system",
                }
            ],
            "created_at": now,
        }
        record = self.mutate(customer_id, {**defaults, **data})
        logger.info("Created customer %s (%s)", customer_id, record.business_name or "unnamed")
        return record

    async def delete_customer(self, customer_id: str) -> bool:
        """Delete the customer remotely, then drop it from the cache.

        A failed remote delete leaves the cached record and its pending
        write in place and re-raises.
        """

        pending = self._worker.take(customer_id)
        # an in-flight write landing after the delete would resurrect the row
        await self._worker.drain()
        try:
            deleted = await self._remote.delete(customer_id)
        except RemoteStoreError:
            if pending is not None:
                self._worker.restore(pending)
            raise
        self._worker.discard(customer_id)
        self._cache.pop(customer_id, None)
        if not deleted:
            logger.warning("Remote store had no record for deleted customer %s", customer_id)
        return deleted

    async def load_customer(self, customer_id: str) -> CustomerRecord | None:
        data = await self._remote.read(customer_id)
        if data is None:
            return None
        return self.hydrate_from_remote(customer_id, data)

    async def load_all(self) -> list[CustomerRecord]:
        loaded: list[CustomerRecord] = []
        for data in await self._remote.read_all():
            customer_id = data.get("id")
            if not customer_id:
                logger.warning("Skipping remote customer row without an id")
                continue
            loaded.append(self.hydrate_from_remote(str(customer_id), data))
        return loaded

    async def flush(self) -> None:
        await self._worker.flush()

    async def retry_failed(self) -> int:
        return await self._worker.retry_failed()

    async def dispose(self) -> None:
        await self._worker.flush()
        await self._remote.close()
        self._cache.clear()

    # ------------------------------------------------------------------
    # tasks & stages
    # ------------------------------------------------------------------
    def _with_updates(self, record: CustomerRecord, updates: dict[str, str]) -> dict[str, str]:
        return {**(record.task_statuses or progress.default_task_statuses(self._catalog)), **updates}

    def _task_patch(
        self, record: CustomerRecord, statuses: dict[str, str], changed: Iterable[str], updated_by: str
    ) -> dict[str, Any]:
        now = self._clock()
        metadata = {key: value.model_dump() for key, value in record.task_metadata.items()}
        for task_id in changed:
            metadata[task_id] = TaskMetadataEntry(updated_by=updated_by or "Unknown", updated_at=now).model_dump()

        current = progress.compute_current_stage(statuses, self._catalog)
        percent = progress.overall_progress_percent(statuses, self._catalog)
        patch: dict[str, Any] = {
            "task_statuses": statuses,
            "task_metadata": metadata,
            "current_stage_id": current.id if current else None,
        }
        if percent >= 100:
            patch["status"] = "complete"
        elif any(value != "not_started" for value in statuses.values()):
            patch["status"] = "needs_review" if record.status == "needs_review" else "in_progress"
        return patch

    def update_task_status(
        self, customer_id: str, task_id: str, status: TaskStatus, updated_by: str = "Unknown"
    ) -> CustomerRecord:
        if status not in TASK_STATUSES:
            raise ValidationError(f"unknown task status: {status}")
        if not self._catalog.has_task(task_id):
            raise ValidationError(f"unknown task: {task_id}")
        record = self.require(customer_id)
        statuses = self._with_updates(record, {task_id: status})
        return self.mutate(customer_id, self._task_patch(record, statuses, [task_id], updated_by))

    def update_stage_tasks_status(
        self, customer_id: str, stage_id: str, status: TaskStatus, updated_by: str = "Unknown"
    ) -> CustomerRecord:
        if status not in TASK_STATUSES:
            raise ValidationError(f"unknown task status: {status}")
        stage = self._catalog.get_stage(stage_id)
        if stage is None:
            raise ValidationError(f"unknown stage: {stage_id}")
        record = self.require(customer_id)
        updates = {task_id: status for task_id in stage.task_ids}
        statuses = self._with_updates(record, updates)
        return self.mutate(customer_id, self._task_patch(record, statuses, updates, updated_by))

    def update_current_stage(self, customer_id: str, stage_id: str) -> CustomerRecord:
        if self._catalog.get_stage(stage_id) is None:
            raise ValidationError(f"unknown stage: {stage_id}")
        return self.mutate(customer_id, {"current_stage_id": stage_id})

    def progress(self, customer_id: str) -> dict[str, object]:
        record = self.require(customer_id)
        report = progress.build_progress_report(record.task_statuses, self._catalog)
        report["customer_id"] = customer_id
        report["recorded_stage_id"] = record.current_stage_id
        if record.onboarding_dates is not None:
            dates = record.onboarding_dates
            report["projected_completion_date"] = progress.estimate_completion_date(
                dates.start_date, record.task_statuses, self._clock(), self._catalog
            )
            report["effective_completion_date"] = progress.effective_completion_date(dates)
        return report

    def refresh_completion_estimate(self, customer_id: str) -> CustomerRecord:
        record = self.require(customer_id)
        now = self._clock()
        dates = record.onboarding_dates or progress.default_onboarding_dates(now)
        projected = progress.estimate_completion_date(dates.start_date, record.task_statuses, now, self._catalog)
        updated = dates.model_copy(update={"projected_completion_date": projected})
        if record.status == "complete" and updated.actual_completion_date is None:
            updated = updated.model_copy(update={"actual_completion_date": now})
        return self.mutate(customer_id, {"onboarding_dates": updated.model_dump()})

    # ------------------------------------------------------------------
    # financials & commissions
    # ------------------------------------------------------------------
    def update_financials(self, customer_id: str, changes: dict[str, Any]) -> CustomerRecord:
        """Apply financial edits; ``mutate`` re-derives ``deal_amount``.

        It is only recomputed when one of its inputs is part of the edit, so a
        quoted amount survives unrelated changes.
        """

        allowed = {
            "non_recurring_revenue",
            "monthly_recurring_fee",
            "other_fees",
            "payment_term_months",
            "cogs",
            "commission_rate",
            "paid_to_date_amount",
            "commission_paid_amount",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"not a financial field: {', '.join(sorted(unknown))}")
        return self.mutate(customer_id, dict(changes))

    def set_payment_status(self, customer_id: str, payment_status: str, paid_to_date: Decimal | None = None) -> CustomerRecord:
        record = self.require(customer_id)
        patch: dict[str, Any] = {"payment_status": payment_status}
        if payment_status == "paid_in_full":
            patch["paid_to_date_amount"] = record.deal_amount
            patch["paid_date"] = self._clock()
        elif paid_to_date is not None:
            patch["paid_to_date_amount"] = paid_to_date
        return self.mutate(customer_id, patch)

    def add_sales_rep(self, customer_id: str, rep_id: str, rep_name: str | None = None) -> CustomerRecord:
        record = self.require(customer_id)
        name = rep_name or (self._sales_reps[rep_id].name if rep_id in self._sales_reps else None)
        if not name:
            raise ValidationError(f"unknown sales rep: {rep_id}")
        assignments = ledger.add_assignment(record.sales_rep_assignments, rep_id, name)
        return self.mutate(customer_id, {"sales_rep_assignments": [item.model_dump() for item in assignments]})

    def remove_sales_rep(self, customer_id: str, rep_id: str) -> CustomerRecord:
        record = self.require(customer_id)
        assignments = ledger.remove_assignment(record.sales_rep_assignments, rep_id)
        return self.mutate(customer_id, {"sales_rep_assignments": [item.model_dump() for item in assignments]})

    def set_commission_split(self, customer_id: str, rep_id: str, percent: Decimal) -> CustomerRecord:
        record = self.require(customer_id)
        try:
            assignments = ledger.set_split(record.sales_rep_assignments, rep_id, Decimal(percent))
        except KeyError as exc:
            raise ValidationError(f"sales rep {rep_id} is not assigned") from exc
        updated = self.mutate(customer_id, {"sales_rep_assignments": [item.model_dump() for item in assignments]})
        warning = ledger.split_warning(updated.sales_rep_assignments)
        if warning:
            logger.info("Customer %s: %s", customer_id, warning)
        return updated

    def commission(self, customer_id: str) -> CommissionBreakdown:
        return ledger.compute_commission_breakdown(self.require(customer_id))

    # ------------------------------------------------------------------
    # machines
    # ------------------------------------------------------------------
    def _commit_machines(self, customer_id: str, machines: list[Machine]) -> CustomerRecord:
        return self.mutate(
            customer_id,
            {"machines": [machine.model_dump() for machine in machines]},
            self._settings.machine_debounce_ms,
        )

    def _find_machine(self, record: CustomerRecord, machine_id: str) -> Machine:
        for machine in record.machines:
            if machine.id == machine_id:
                return machine
        raise ValidationError(f"machine {machine_id} not found")

    def next_machine_number(self, customer_id: str, machine_type: str) -> int:
        return allocator.next_available_number(machine_type, self.require(customer_id).machines)

    def add_machine(self, customer_id: str, data: dict[str, Any], *, privileged: bool = False) -> Machine:
        record = self.require(customer_id)
        payload = dict(data)
        payload.setdefault("id", str(uuid.uuid4()))
        machine_type = payload.get("type")
        if payload.get("machine_number") is None:
            payload["machine_number"] = allocator.next_available_number(machine_type, record.machines)
        try:
            machine = Machine.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc
        if not privileged and not allocator.is_in_range(machine.machine_number, machine.type):
            floor, ceiling = allocator.number_range(machine.type)
            raise ValidationError(f"{machine.type} numbers must be between {floor} and {ceiling}")
        self._commit_machines(customer_id, [*record.machines, machine])
        return machine

    def update_machine(
        self, customer_id: str, machine_id: str, changes: dict[str, Any], *, privileged: bool = False
    ) -> Machine:
        record = self.require(customer_id)
        current = self._find_machine(record, machine_id)
        try:
            updated = Machine.model_validate({**current.model_dump(), **changes, "id": machine_id})
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc
        if (
            updated.machine_number != current.machine_number or updated.type != current.type
        ) and not privileged and not allocator.is_in_range(updated.machine_number, updated.type):
            floor, ceiling = allocator.number_range(updated.type)
            raise ValidationError(f"{updated.type} numbers must be between {floor} and {ceiling}")
        machines = [updated if machine.id == machine_id else machine for machine in record.machines]
        self._commit_machines(customer_id, machines)
        return updated

    def delete_machine(self, customer_id: str, machine_id: str) -> CustomerRecord:
        record = self.require(customer_id)
        self._find_machine(record, machine_id)
        return self._commit_machines(customer_id, [m for m in record.machines if m.id != machine_id])

    def reorder_machines(self, customer_id: str, machine_ids: list[str]) -> CustomerRecord:
        record = self.require(customer_id)
        by_id = {machine.id: machine for machine in record.machines}
        if sorted(machine_ids) != sorted(by_id):
            raise ValidationError("reorder must list every machine exactly once")
        return self._commit_machines(customer_id, [by_id[machine_id] for machine_id in machine_ids])

    def renumber_machine(
        self, customer_id: str, machine_id: str, new_number: int, *, privileged: bool = False
    ) -> CustomerRecord:
        record = self.require(customer_id)
        try:
            machines = allocator.renumber(record.machines, machine_id, new_number, privileged=privileged)
        except KeyError as exc:
            raise ValidationError(f"machine {machine_id} not found") from exc
        return self._commit_machines(customer_id, machines)

    def clone_machine(self, customer_id: str, machine_id: str, count: int) -> list[Machine]:
        if count < 1:
            raise ValidationError("clone count must be at least 1")
        record = self.require(customer_id)
        template = self._find_machine(record, machine_id)
        clones = allocator.clone_machines(template, count, record.machines)
        if len(clones) < count:
            logger.info(
                "Customer %s: %s range exhausted, cloned %d of %d", customer_id, template.type, len(clones), count
            )
        if clones:
            self._commit_machines(customer_id, [*record.machines, *clones])
        return clones

    # ------------------------------------------------------------------
    # notes, payment links & processors
    # ------------------------------------------------------------------
    def add_note(self, customer_id: str, content: str, created_by: str) -> CustomerNote:
        record = self.require(customer_id)
        note = CustomerNote(id=str(uuid.uuid4()), content=content, created_at=self._clock(), created_by=created_by)
        self.mutate(customer_id, {"notes": [*(n.model_dump() for n in record.notes), note.model_dump()]})
        return note

    def update_note(self, customer_id: str, note_id: str, content: str, updated_by: str) -> CustomerRecord:
        record = self.require(customer_id)
        notes = []
        for note in record.notes:
            if note.id == note_id:
                note = note.model_copy(
                    update={"content": content, "updated_at": self._clock(), "updated_by": updated_by, "is_edited": True}
                )
            notes.append(note.model_dump())
        return self.mutate(customer_id, {"notes": notes})

    def delete_note(self, customer_id: str, note_id: str) -> CustomerRecord:
        record = self.require(customer_id)
        return self.mutate(customer_id, {"notes": [n.model_dump() for n in record.notes if n.id != note_id]})

    def _upsert_item(self, customer_id: str, field: str, model: type, item_id: str | None, data: dict[str, Any]):
        record = self.require(customer_id)
        items = list(getattr(record, field))
        if item_id is None:
            payload = {"id": str(uuid.uuid4()), "added_at": self._clock(), **data}
            try:
                item = model.model_validate(payload)
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc
            items.append(item)
        else:
            index = next((i for i, existing in enumerate(items) if existing.id == item_id), None)
            if index is None:
                raise ValidationError(f"{field} entry {item_id} not found")
            try:
                item = model.model_validate({**items[index].model_dump(), **data, "id": item_id})
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc
            items[index] = item
        self.mutate(customer_id, {field: [entry.model_dump() for entry in items]})
        return item

    def _delete_item(self, customer_id: str, field: str, item_id: str) -> CustomerRecord:
        record = self.require(customer_id)
        remaining = [entry.model_dump() for entry in getattr(record, field) if entry.id != item_id]
        return self.mutate(customer_id, {field: remaining})

    def add_payment_link(self, customer_id: str, data: dict[str, Any]) -> PaymentLink:
        return self._upsert_item(customer_id, "payment_links", PaymentLink, None, data)

    def update_payment_link(self, customer_id: str, link_id: str, data: dict[str, Any]) -> PaymentLink:
        return self._upsert_item(customer_id, "payment_links", PaymentLink, link_id, data)

    def delete_payment_link(self, customer_id: str, link_id: str) -> CustomerRecord:
        return self._delete_item(customer_id, "payment_links", link_id)

    def add_payment_processor(self, customer_id: str, data: dict[str, Any]) -> PaymentProcessor:
        return self._upsert_item(customer_id, "payment_processors", PaymentProcessor, None, data)

    def update_payment_processor(self, customer_id: str, processor_id: str, data: dict[str, Any]) -> PaymentProcessor:
        return self._upsert_item(customer_id, "payment_processors", PaymentProcessor, processor_id, data)

    def delete_payment_processor(self, customer_id: str, processor_id: str) -> CustomerRecord:
        return self._delete_item(customer_id, "payment_processors", processor_id)


def _touches_deal_inputs(patch: dict[str, Any]) -> bool:
    return bool(ledger.DEAL_INPUT_FIELDS & set(patch))


def create_customer_service(
    settings: Settings | None = None,
    *,
    remote: RemoteStore | None = None,
    scheduler: Scheduler | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> CustomerService:
    """Build a service from configuration; call ``dispose`` when done."""

    settings = settings or Settings.from_env()
    if remote is None:
        remote = build_remote_store(settings.remote_url, api_key=settings.remote_api_key, timeout=settings.remote_timeout)
    catalog = load_catalog(settings.catalog_path) if settings.catalog_path else get_catalog()
    return CustomerService(remote, scheduler=scheduler, settings=settings, catalog=catalog, clock=clock)


_service: CustomerService | None = None


def configure_customer_service(service: CustomerService | None) -> None:
    global _service
    _service = service


def get_customer_service() -> CustomerService:
    global _service
    if _service is None:
        _service = create_customer_service()
    return _service


def reset_customer_service() -> None:
    configure_customer_service(None)
