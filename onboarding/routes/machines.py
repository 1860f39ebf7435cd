from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from onboarding.application import get_customer_service
from onboarding.core.validation import ValidationError

router = APIRouter(prefix="/customers/{customer_id}/machines", tags=["machines"])


@router.get("/next-number")
async def next_machine_number(customer_id: str, machine_type: str = Query(alias="type")) -> dict:
    try:
        number = get_customer_service().next_machine_number(customer_id, machine_type)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"type": machine_type, "machine_number": number}


@router.post("", status_code=201)
async def add_machine(customer_id: str, payload: dict) -> dict:
    data = dict(payload)
    privileged = bool(data.pop("privileged", False))
    try:
        machine = get_customer_service().add_machine(customer_id, data, privileged=privileged)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return machine.model_dump(mode="json")


@router.patch("/{machine_id}")
async def update_machine(customer_id: str, machine_id: str, payload: dict) -> dict:
    data = dict(payload)
    privileged = bool(data.pop("privileged", False))
    try:
        machine = get_customer_service().update_machine(customer_id, machine_id, data, privileged=privileged)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return machine.model_dump(mode="json")


@router.delete("/{machine_id}")
async def delete_machine(customer_id: str, machine_id: str) -> dict:
    try:
        record = get_customer_service().delete_machine(customer_id, machine_id)
    except ValidationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"items": [machine.model_dump(mode="json") for machine in record.machines]}


@router.post("/{machine_id}/renumber")
async def renumber_machine(customer_id: str, machine_id: str, payload: dict) -> dict:
    if payload.get("machine_number") is None:
        raise HTTPException(status_code=400, detail="machine_number is required")
    try:
        new_number = int(payload["machine_number"])
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail="machine_number must be an integer") from exc
    try:
        record = get_customer_service().renumber_machine(
            customer_id, machine_id, new_number, privileged=bool(payload.get("privileged", False))
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"items": [machine.model_dump(mode="json") for machine in record.machines]}


@router.post("/{machine_id}/clone")
async def clone_machine(customer_id: str, machine_id: str, payload: dict) -> dict:
    try:
        count = int(payload.get("count", 1))
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail="count must be an integer") from exc
    try:
        clones = get_customer_service().clone_machine(customer_id, machine_id, count)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"requested": count, "items": [machine.model_dump(mode="json") for machine in clones]}
