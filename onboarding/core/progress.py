"""Stage and task progress derived from a customer's task status map.

Everything here is a pure function of the catalog and the status map.
Task ids that the catalog does not know are ignored; catalog tasks that are
missing from the map count as ``not_started``.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping

from onboarding.core.catalog import WorkflowCatalog, WorkflowStage, get_catalog
from onboarding.core.schema import OnboardingDates, StageStatus, TaskStatus

STANDARD_ONBOARDING_DAYS = 28

StatusMap = Mapping[str, str]


def _resolve(catalog: WorkflowCatalog | None) -> WorkflowCatalog:
    return get_catalog() if catalog is None else catalog


def _status_of(statuses: StatusMap, task_id: str) -> str:
    return statuses.get(task_id) or "not_started"


def _round_percent(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 0
    value = Decimal(100 * numerator) / Decimal(denominator)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def stage_status(stage: WorkflowStage, statuses: StatusMap) -> StageStatus:
    if not stage.tasks:
        return "not_started"
    values = [_status_of(statuses, task_id) for task_id in stage.task_ids]
    if all(value == "complete" for value in values):
        return "complete"
    if any(value in {"complete", "in_progress"} for value in values):
        return "in_progress"
    return "not_started"


def current_stage_index(statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> int:
    catalog = _resolve(catalog)
    last_index = len(catalog) - 1
    for index in range(last_index, -1, -1):
        stage = catalog.stages[index]
        touched = any(_status_of(statuses, task_id) != "not_started" for task_id in stage.task_ids)
        if not touched:
            continue
        if stage_status(stage, statuses) == "complete":
            return min(index + 1, last_index)
        return index
    return 0


def completed_task_count(statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> int:
    catalog = _resolve(catalog)
    return sum(1 for task in catalog.tasks() if _status_of(statuses, task.id) == "complete")


def overall_progress_percent(statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> int:
    catalog = _resolve(catalog)
    return _round_percent(completed_task_count(statuses, catalog), catalog.task_count)


def stage_progress_percent(stage_id: str, statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> int:
    catalog = _resolve(catalog)
    stage = catalog.get_stage(stage_id)
    if stage is None:
        return 0
    done = sum(1 for task_id in stage.task_ids if _status_of(statuses, task_id) == "complete")
    return _round_percent(done, len(stage.tasks))


def default_task_statuses(catalog: WorkflowCatalog | None = None) -> dict[str, TaskStatus]:
    catalog = _resolve(catalog)
    return {task.id: "not_started" for task in catalog.tasks()}


# ----------------------------------------------------------------------
# public entry points used by the service and API layers
# ----------------------------------------------------------------------
def compute_overall_progress(statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> int:
    return overall_progress_percent(statuses, catalog)


def compute_stage_status(stage_id: str, statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> StageStatus:
    catalog = _resolve(catalog)
    stage = catalog.get_stage(stage_id)
    if stage is None:
        raise KeyError(stage_id)
    return stage_status(stage, statuses)


def compute_current_stage(statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> WorkflowStage | None:
    catalog = _resolve(catalog)
    if not catalog.stages:
        return None
    return catalog.stages[current_stage_index(statuses, catalog)]


def build_progress_report(statuses: StatusMap, catalog: WorkflowCatalog | None = None) -> dict[str, object]:
    """Summarise per-stage and overall progress for display."""

    catalog = _resolve(catalog)
    stages: list[dict[str, object]] = []
    in_progress_total = 0
    for stage in catalog.stages:
        values = [_status_of(statuses, task_id) for task_id in stage.task_ids]
        completed = values.count("complete")
        in_progress = values.count("in_progress")
        in_progress_total += in_progress
        stages.append(
            {
                "id": stage.id,
                "name": stage.name,
                "short_name": stage.short_name,
                "status": stage_status(stage, statuses),
                "total_tasks": len(values),
                "completed_tasks": completed,
                "in_progress_tasks": in_progress,
                "percent": _round_percent(completed, len(values)),
            }
        )

    current = compute_current_stage(statuses, catalog)
    completed_total = completed_task_count(statuses, catalog)
    return {
        "overall": _round_percent(completed_total, catalog.task_count),
        "current_stage_id": current.id if current else None,
        "current_stage_index": current_stage_index(statuses, catalog) if current else None,
        "total_tasks": catalog.task_count,
        "completed_tasks": completed_total,
        "in_progress_tasks": in_progress_total,
        "stages": stages,
    }


# ----------------------------------------------------------------------
# completion date tracking
# ----------------------------------------------------------------------
def default_onboarding_dates(start: datetime) -> OnboardingDates:
    return OnboardingDates(
        start_date=start,
        estimated_completion_date=start + timedelta(days=STANDARD_ONBOARDING_DAYS),
    )


def estimate_completion_date(
    start: datetime,
    statuses: StatusMap,
    now: datetime,
    catalog: WorkflowCatalog | None = None,
) -> datetime:
    """Project a finish date from the task completion velocity so far."""

    catalog = _resolve(catalog)
    total = catalog.task_count
    completed = completed_task_count(statuses, catalog)
    if total and completed >= total:
        return now
    elapsed_days = max((now - start).total_seconds() / 86400, 0.0)
    if completed == 0 or elapsed_days < 1:
        return start + timedelta(days=STANDARD_ONBOARDING_DAYS)
    velocity = completed / elapsed_days
    remaining_days = (total - completed) / velocity
    return now + timedelta(days=remaining_days)


def effective_completion_date(dates: OnboardingDates) -> datetime:
    if dates.actual_completion_date is not None:
        return dates.actual_completion_date
    if dates.use_admin_override and dates.admin_override_date is not None:
        return dates.admin_override_date
    return dates.projected_completion_date or dates.estimated_completion_date
