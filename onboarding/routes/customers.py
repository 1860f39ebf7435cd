from __future__ import annotations

from decimal import Decimal, InvalidOperation

from fastapi import APIRouter, HTTPException

from onboarding.application import get_customer_service
from onboarding.core.validation import ValidationError
from onboarding.infrastructure import RemoteStoreError
from onboarding.reports.commissions import commission_entries, summarise_by_rep

router = APIRouter(prefix="/customers", tags=["customers"])
commissions_router = APIRouter(prefix="/commissions", tags=["commissions"])


def _decimal(value: object, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise HTTPException(status_code=422, detail=f"{field} must be a number") from exc


# ----------------------------------------------------------------------
# records
# ----------------------------------------------------------------------
@router.get("")
async def list_customers() -> dict:
    service = get_customer_service()
    return {"items": [record.model_dump(mode="json") for record in service.list_customers()]}


@router.post("", status_code=201)
async def create_customer(payload: dict) -> dict:
    service = get_customer_service()
    try:
        record = service.create_customer(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return record.model_dump(mode="json")


@router.get("/{customer_id}")
async def get_customer(customer_id: str) -> dict:
    record = get_customer_service().get(customer_id)
    if record is None:
        raise HTTPException(status_code=404, detail="customer not found")
    return record.model_dump(mode="json")


@router.patch("/{customer_id}")
async def update_customer(customer_id: str, payload: dict) -> dict:
    service = get_customer_service()
    try:
        record = service.mutate(customer_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return record.model_dump(mode="json")


@router.delete("/{customer_id}")
async def delete_customer(customer_id: str) -> dict:
    service = get_customer_service()
    try:
        deleted = await service.delete_customer(customer_id)
    except RemoteStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"id": customer_id, "deleted": deleted}


@router.post("/{customer_id}/hydrate")
async def hydrate_customer(customer_id: str, payload: dict) -> dict:
    service = get_customer_service()
    try:
        record = service.hydrate_from_remote(customer_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return record.model_dump(mode="json")


@router.post("/{customer_id}/load")
async def load_customer(customer_id: str) -> dict:
    service = get_customer_service()
    try:
        record = await service.load_customer(customer_id)
    except RemoteStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="customer not found in remote store")
    return record.model_dump(mode="json")


# ----------------------------------------------------------------------
# progress
# ----------------------------------------------------------------------
@router.get("/{customer_id}/progress")
async def get_progress(customer_id: str) -> dict:
    return get_customer_service().progress(customer_id)


@router.put("/{customer_id}/tasks/{task_id}")
async def update_task(customer_id: str, task_id: str, payload: dict) -> dict:
    service = get_customer_service()
    if not service.catalog.has_task(task_id):
        raise HTTPException(status_code=404, detail=f"unknown task: {task_id}")
    status = payload.get("status")
    if not status:
        raise HTTPException(status_code=400, detail="status is required")
    try:
        record = service.update_task_status(customer_id, task_id, status, payload.get("updated_by") or "Unknown")
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"task_id": task_id, "status": status, "progress": service.progress(record.id)}


@router.put("/{customer_id}/stages/{stage_id}/tasks")
async def update_stage_tasks(customer_id: str, stage_id: str, payload: dict) -> dict:
    service = get_customer_service()
    if service.catalog.get_stage(stage_id) is None:
        raise HTTPException(status_code=404, detail=f"unknown stage: {stage_id}")
    status = payload.get("status")
    if not status:
        raise HTTPException(status_code=400, detail="status is required")
    try:
        record = service.update_stage_tasks_status(
            customer_id, stage_id, status, payload.get("updated_by") or "Unknown"
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"stage_id": stage_id, "status": status, "progress": service.progress(record.id)}


@router.put("/{customer_id}/current-stage")
async def update_current_stage(customer_id: str, payload: dict) -> dict:
    service = get_customer_service()
    stage_id = payload.get("stage_id")
    if not stage_id:
        raise HTTPException(status_code=400, detail="stage_id is required")
    if service.catalog.get_stage(stage_id) is None:
        raise HTTPException(status_code=404, detail=f"unknown stage: {stage_id}")
    record = service.update_current_stage(customer_id, stage_id)
    return {"id": record.id, "current_stage_id": record.current_stage_id}


# ----------------------------------------------------------------------
# financials & commissions
# ----------------------------------------------------------------------
@router.patch("/{customer_id}/financials")
async def update_financials(customer_id: str, payload: dict) -> dict:
    service = get_customer_service()
    try:
        service.update_financials(customer_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return service.commission(customer_id).model_dump(mode="json")


@router.put("/{customer_id}/payment-status")
async def update_payment_status(customer_id: str, payload: dict) -> dict:
    service = get_customer_service()
    payment_status = payload.get("payment_status")
    if not payment_status:
        raise HTTPException(status_code=400, detail="payment_status is required")
    paid_to_date = payload.get("paid_to_date_amount")
    amount = _decimal(paid_to_date, "paid_to_date_amount") if paid_to_date is not None else None
    try:
        service.set_payment_status(customer_id, payment_status, amount)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return service.commission(customer_id).model_dump(mode="json")


@router.get("/{customer_id}/commission")
async def get_commission(customer_id: str) -> dict:
    return get_customer_service().commission(customer_id).model_dump(mode="json")


@router.post("/{customer_id}/sales-reps")
async def add_sales_rep(customer_id: str, payload: dict) -> dict:
    service = get_customer_service()
    rep_id = payload.get("rep_id")
    if not rep_id:
        raise HTTPException(status_code=400, detail="rep_id is required")
    try:
        record = service.add_sales_rep(customer_id, rep_id, payload.get("rep_name"))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"items": [item.model_dump(mode="json") for item in record.sales_rep_assignments]}


@router.delete("/{customer_id}/sales-reps/{rep_id}")
async def remove_sales_rep(customer_id: str, rep_id: str) -> dict:
    record = get_customer_service().remove_sales_rep(customer_id, rep_id)
    return {"items": [item.model_dump(mode="json") for item in record.sales_rep_assignments]}


@router.put("/{customer_id}/sales-reps/{rep_id}")
async def set_commission_split(customer_id: str, rep_id: str, payload: dict) -> dict:
    service = get_customer_service()
    if payload.get("commission_percent") is None:
        raise HTTPException(status_code=400, detail="commission_percent is required")
    percent = _decimal(payload["commission_percent"], "commission_percent")
    try:
        service.set_commission_split(customer_id, rep_id, percent)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    breakdown = service.commission(customer_id)
    return {
        "items": [item.model_dump(mode="json") for item in breakdown.assignees],
        "split_total": str(breakdown.split_total),
        "split_warning": breakdown.split_warning,
    }


@commissions_router.get("")
async def list_commissions() -> dict:
    service = get_customer_service()
    entries = commission_entries(service.list_customers())
    summary = summarise_by_rep(entries)
    return {
        "items": entries.to_dict(orient="records"),
        "by_rep": summary.to_dict(orient="records"),
    }
