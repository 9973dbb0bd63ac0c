"""
Diff engine: compare desired and observed unit counts

Everything in this module is a pure function of its arguments.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .models import Unit, unit_index, unit_name


class Action(Enum):
    GROW = "grow"
    SHRINK = "shrink"
    NOOP = "noop"


@dataclass(frozen=True)
class ScaleDecision:
    """What a pass has to do to converge: one action and how many units it touches"""
    action: Action
    count: int = 0

    @property
    def converged(self) -> bool:
        return self.action is Action.NOOP


def compute_decision(desired_size: int, current_size: int) -> ScaleDecision:
    """
    Decide whether to grow, shrink or leave the unit pool alone

    Args:
        desired_size: Target number of units
        current_size: Number of live units observed

    Returns:
        ScaleDecision with the action and the number of units to add or remove
    """
    if desired_size < 0 or current_size < 0:
        raise ValueError(f"sizes must not be negative (desired={desired_size}, current={current_size})")

    if current_size < desired_size:
        return ScaleDecision(Action.GROW, desired_size - current_size)
    if current_size > desired_size:
        return ScaleDecision(Action.SHRINK, current_size - desired_size)
    return ScaleDecision(Action.NOOP)


def _eviction_key(instance_name: str, unit: Unit) -> Tuple[int, int, str]:
    index: Optional[int] = unit_index(instance_name, unit.name)
    if index is None:
        return (1, 0, unit.name)
    return (0, index, unit.name)


def order_units(units: Iterable[Unit], instance_name: str) -> List[Unit]:
    """
    Sort units by their generated index, ascending

    Units whose name was not generated for this Instance sort after every
    indexed unit, by name.
    """
    return sorted(units, key=lambda unit: _eviction_key(instance_name, unit))


def select_units_to_remove(units: Sequence[Unit], instance_name: str, count: int) -> List[Unit]:
    """
    Pick exactly `count` units to delete, highest index first

    The store gives no ordering guarantee for listings, so the choice is made
    on the names alone and is identical on every retry.
    """
    if count <= 0:
        return []
    ordered = order_units(units, instance_name)
    return list(reversed(ordered[-count:]))


def next_unit_indices(instance_name: str, start: int, count: int, taken_names: Set[str]) -> List[int]:
    """
    Indices for `count` new units, counting up from `start`

    Indices whose name already exists in the store (for example a unit that
    is still terminating) are skipped.
    """
    indices = []
    index = start
    while len(indices) < count:
        if unit_name(instance_name, index) not in taken_names:
            indices.append(index)
        index += 1
    return indices
