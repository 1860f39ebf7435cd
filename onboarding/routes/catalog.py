from __future__ import annotations

from fastapi import APIRouter

from onboarding.application import get_customer_service

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("")
async def get_catalog() -> dict:
    service = get_customer_service()
    catalog = service.catalog
    stages = []
    for stage in catalog.stages:
        stages.append(
            {
                "id": stage.id,
                "name": stage.name,
                "short_name": stage.short_name,
                "tasks": [
                    {
                        "id": task.id,
                        "name": task.name,
                        "team": sorted(task.team),
                        "priority": task.priority,
                        "customer_visible": task.customer_visible,
                        "description": task.description,
                    }
                    for task in stage.tasks
                ],
            }
        )
    reps = [{"id": rep.id, "name": rep.name, "email": rep.email} for rep in service.sales_reps]
    return {"stages": stages, "total_tasks": catalog.task_count, "sales_reps": reps}
