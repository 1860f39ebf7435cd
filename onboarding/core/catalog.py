"""Static onboarding workflow catalog loaded from version-controlled YAML."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import yaml

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
DEFAULT_CATALOG_PATH = CONFIG_DIR / "workflow_catalog.yaml"
SALES_REPS_PATH = CONFIG_DIR / "sales_reps.yaml"

PRIORITIES = {"low", "medium", "high"}


class CatalogError(ValueError):
    """Raised when a workflow catalog file is malformed."""


@dataclass(frozen=True, slots=True)
class TaskDef:
    id: str
    name: str
    team: frozenset[str] = frozenset()
    priority: str = "medium"
    customer_visible: bool = False
    description: str | None = None


@dataclass(frozen=True, slots=True)
class WorkflowStage:
    id: str
    name: str
    short_name: str
    tasks: tuple[TaskDef, ...] = ()

    @property
    def task_ids(self) -> tuple[str, ...]:
        return tuple(task.id for task in self.tasks)


@dataclass(frozen=True, slots=True)
class SalesRep:
    id: str
    name: str
    email: str = ""


@dataclass(frozen=True)
class WorkflowCatalog:
    """Ordered stages plus lookup tables; never mutated after load."""

    stages: tuple[WorkflowStage, ...]
    _stage_index: dict[str, int] = field(default_factory=dict, repr=False, compare=False)
    _task_stage: dict[str, str] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        for position, stage in enumerate(self.stages):
            if stage.id in self._stage_index:
                raise CatalogError(f"duplicate stage id: {stage.id}")
            self._stage_index[stage.id] = position
            for task in stage.tasks:
                if task.id in self._task_stage:
                    raise CatalogError(f"duplicate task id: {task.id}")
                self._task_stage[task.id] = stage.id

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    @property
    def task_count(self) -> int:
        return len(self._task_stage)

    def tasks(self) -> Iterable[TaskDef]:
        for stage in self.stages:
            yield from stage.tasks

    def get_stage(self, stage_id: str) -> WorkflowStage | None:
        position = self._stage_index.get(stage_id)
        return None if position is None else self.stages[position]

    def stage_index(self, stage_id: str) -> int | None:
        return self._stage_index.get(stage_id)

    def stage_for_task(self, task_id: str) -> WorkflowStage | None:
        stage_id = self._task_stage.get(task_id)
        return None if stage_id is None else self.get_stage(stage_id)

    def has_task(self, task_id: str) -> bool:
        return task_id in self._task_stage

    def customer_visible_tasks(self) -> list[TaskDef]:
        return [task for task in self.tasks() if task.customer_visible]


def _parse_task(raw: dict) -> TaskDef:
    if not isinstance(raw, dict) or not raw.get("id") or not raw.get("name"):
        raise CatalogError(f"task entries need an id and a name: {raw!r}")
    priority = str(raw.get("priority") or "medium")
    if priority not in PRIORITIES:
        raise CatalogError(f"task {raw['id']} has unknown priority {priority!r}")
    team = raw.get("team") or []
    if isinstance(team, str):
        team = [part.strip() for part in team.split(",") if part.strip()]
    return TaskDef(
        id=str(raw["id"]),
        name=str(raw["name"]),
        team=frozenset(str(member) for member in team),
        priority=priority,
        customer_visible=bool(raw.get("customer_visible", False)),
        description=raw.get("description"),
    )


def parse_catalog(data: dict | None) -> WorkflowCatalog:
    """Build a catalog from the decoded YAML document."""

    if not isinstance(data, dict):
        raise CatalogError("catalog document must be a mapping")
    stages: list[WorkflowStage] = []
    for raw in data.get("stages") or []:
        if not isinstance(raw, dict) or not raw.get("id") or not raw.get("name"):
            raise CatalogError(f"stage entries need an id and a name: {raw!r}")
        tasks = tuple(_parse_task(item) for item in raw.get("tasks") or [])
        stages.append(
            WorkflowStage(
                id=str(raw["id"]),
                name=str(raw["name"]),
                short_name=str(raw.get("short_name") or raw["name"]),
                tasks=tasks,
            )
        )
    return WorkflowCatalog(stages=tuple(stages))


def load_catalog(path: Path | None = None) -> WorkflowCatalog:
    path = path or DEFAULT_CATALOG_PATH
    if not path.exists():
        raise CatalogError(f"workflow catalog not found: {path}")
    with path.open("r", encoding="utf-8") as fp:
        return parse_catalog(yaml.safe_load(fp))


def load_sales_reps(path: Path | None = None) -> list[SalesRep]:
    path = path or SALES_REPS_PATH
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    return [
        SalesRep(id=str(item["id"]), name=str(item["name"]), email=str(item.get("email") or ""))
        for item in data.get("reps") or []
    ]


_catalog: WorkflowCatalog | None = None


def configure_catalog(catalog: WorkflowCatalog) -> None:
    """Install the catalog used by the module-level helpers."""

    global _catalog
    _catalog = catalog


def get_catalog() -> WorkflowCatalog:
    """Return the configured catalog, loading the bundled one on first use."""

    global _catalog
    if _catalog is None:
        _catalog = load_catalog()
    return _catalog
