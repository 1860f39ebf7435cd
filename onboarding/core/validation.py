from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from onboarding.core.schema import Machine, SalesRepAssignment


class ValidationError(Exception):
    """Raised when domain validation fails."""


def validate_split_percent(percent: Decimal) -> None:
    if percent < 0 or percent > Decimal("100"):
        raise ValidationError("commission percent must be between 0 and 100")


def validate_assignments(assignments: Iterable[SalesRepAssignment]) -> None:
    seen: set[str] = set()
    for assignment in assignments:
        validate_split_percent(assignment.commission_percent)
        if assignment.rep_id in seen:
            raise ValidationError(f"sales rep {assignment.rep_id} is assigned twice")
        seen.add(assignment.rep_id)


def validate_machine_numbers(machines: Iterable[Machine]) -> None:
    owners: dict[int, str] = {}
    for machine in machines:
        holder = owners.get(machine.machine_number)
        if holder is not None and holder != machine.id:
            raise ValidationError(f"machine number {machine.machine_number} is already in use")
        owners[machine.machine_number] = machine.id
