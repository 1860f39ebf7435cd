"""Machine numbering: washers take 1-99, dryers 101-199.

100 sits between the ranges and is only reachable through a privileged
renumber.
"""
from __future__ import annotations

import uuid
from typing import Iterable, Sequence

from onboarding.core.schema import Machine, MachineType
from onboarding.core.validation import ValidationError

MACHINE_NUMBER_RANGES: dict[str, tuple[int, int]] = {
    "washer": (1, 99),
    "dryer": (101, 199),
}


def number_range(machine_type: MachineType) -> tuple[int, int]:
    try:
        return MACHINE_NUMBER_RANGES[machine_type]
    except KeyError as exc:
        raise ValidationError(f"unknown machine type: {machine_type}") from exc


def is_in_range(number: int, machine_type: MachineType) -> bool:
    floor, ceiling = number_range(machine_type)
    return floor <= number <= ceiling


def _used_numbers(machines: Iterable[Machine]) -> set[int]:
    return {machine.machine_number for machine in machines}


def next_available_number(machine_type: MachineType, machines: Sequence[Machine]) -> int:
    floor, ceiling = number_range(machine_type)
    used = _used_numbers(machines)
    for number in range(floor, ceiling + 1):
        if number not in used:
            return number
    # Range exhausted: overflow past the ceiling instead of failing.
    candidate = sum(1 for machine in machines if machine.type == machine_type) + floor
    while candidate in used:
        candidate += 1
    return candidate


allocate_next_number = next_available_number


def find_by_number(machines: Iterable[Machine], number: int) -> Machine | None:
    for machine in machines:
        if machine.machine_number == number:
            return machine
    return None


def renumber(
    machines: Sequence[Machine],
    machine_id: str,
    new_number: int,
    *,
    privileged: bool = False,
) -> list[Machine]:
    """Return the machine list with ``machine_id`` moved to ``new_number``.

    When another machine already holds the number the two swap, and both
    changes come back together in the returned list. A swap that would push
    the occupant outside its own range also needs ``privileged``.
    """

    target = next((machine for machine in machines if machine.id == machine_id), None)
    if target is None:
        raise KeyError(machine_id)
    if not is_in_range(new_number, target.type) and not privileged:
        floor, ceiling = number_range(target.type)
        raise ValidationError(
            f"{target.type} numbers must be between {floor} and {ceiling}"
        )
    if new_number == target.machine_number:
        return list(machines)

    occupant = find_by_number(machines, new_number)
    old_number = target.machine_number
    if occupant is not None and not privileged and not is_in_range(old_number, occupant.type):
        raise ValidationError(
            f"swapping would move {occupant.type} {new_number} to {old_number}, outside its range"
        )
    updated: list[Machine] = []
    for machine in machines:
        if machine.id == target.id:
            machine = machine.model_copy(update={"machine_number": new_number})
        elif occupant is not None and machine.id == occupant.id:
            machine = machine.model_copy(update={"machine_number": old_number})
        updated.append(machine)
    return updated


def clone_machines(template: Machine, count: int, machines: Sequence[Machine]) -> list[Machine]:
    """Create up to ``count`` copies of ``template`` on free in-range numbers."""

    floor, ceiling = number_range(template.type)
    used = _used_numbers(machines)
    clones: list[Machine] = []
    number = floor
    while len(clones) < count and number <= ceiling:
        if number not in used:
            clones.append(
                template.model_copy(
                    update={
                        "id": str(uuid.uuid4()),
                        "machine_number": number,
                        "serial_number": "",
                    },
                    deep=True,
                )
            )
            used.add(number)
        number += 1
    return clones
