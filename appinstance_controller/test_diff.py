#!/usr/bin/env python3
"""Tests for the diff engine"""

import sys

import pytest

from appinstance_controller.diff import (
    Action, ScaleDecision, compute_decision, next_unit_indices, order_units, select_units_to_remove
)
from appinstance_controller.models import Unit


def units(*names):
    return [Unit(name=name, namespace="default") for name in names]


def test_compute_decision():
    print("🧪 Testing compute_decision...")

    assert compute_decision(3, 0) == ScaleDecision(Action.GROW, 3)
    assert compute_decision(1, 3) == ScaleDecision(Action.SHRINK, 2)
    assert compute_decision(2, 2) == ScaleDecision(Action.NOOP, 0)
    assert compute_decision(0, 0).converged, "Zero desired and zero observed is converged"

    print("✅ compute_decision tests passed!")


def test_compute_decision_rejects_negative_sizes():
    with pytest.raises(ValueError):
        compute_decision(-1, 0)
    with pytest.raises(ValueError):
        compute_decision(1, -1)


def test_order_units_by_index_with_foreign_names_last():
    ordered = order_units(units("app-pod-10", "zeta", "app-pod-2", "app-pod-0", "alpha"), "app")
    assert [unit.name for unit in ordered] == ["app-pod-0", "app-pod-2", "app-pod-10", "alpha", "zeta"]


def test_select_units_to_remove_highest_first():
    print("\n🧪 Testing eviction order...")

    listed = units("app-pod-1", "app-pod-3", "app-pod-0", "app-pod-2")
    chosen = select_units_to_remove(listed, "app", 2)
    assert [unit.name for unit in chosen] == ["app-pod-3", "app-pod-2"]

    again = select_units_to_remove(list(reversed(listed)), "app", 2)
    assert chosen == again, "Choice must not depend on listing order"

    assert select_units_to_remove(listed, "app", 0) == []

    print("✅ Eviction order tests passed!")


def test_select_units_prefers_foreign_names():
    chosen = select_units_to_remove(units("app-pod-0", "app-manual", "app-pod-1"), "app", 1)
    assert [unit.name for unit in chosen] == ["app-manual"]


def test_next_unit_indices():
    assert next_unit_indices("app", 0, 3, set()) == [0, 1, 2]
    assert next_unit_indices("app", 2, 2, {"app-pod-2"}) == [3, 4], "Taken names are skipped"
    assert next_unit_indices("app", 1, 0, set()) == []


def main():
    """Run all tests"""
    return pytest.main([__file__, "-v"])


if __name__ == "__main__":
    sys.exit(main())
