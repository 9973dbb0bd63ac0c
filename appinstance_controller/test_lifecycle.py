#!/usr/bin/env python3
"""Tests for unit creation/deletion and the unit template"""

import os
import sys
import tempfile

import pytest

from appinstance_controller.config import Config
from appinstance_controller.errors import PartialBatchError
from appinstance_controller.lifecycle import (
    DEFAULT_UNIT_TEMPLATE, UnitLifecycleManager, build_unit_manifest, load_unit_template, parse_unit_template
)
from appinstance_controller.models import Instance, InstanceKey, Unit
from appinstance_controller.testing import FakeCluster


def make_instance(size=2):
    return Instance(key=InstanceKey("team-a", "app"), desired_size=size, uid="1234")


def test_manifest_has_label_and_controller_reference():
    print("🧪 Testing unit manifest...")

    manifest = build_unit_manifest(make_instance(), 4, DEFAULT_UNIT_TEMPLATE)
    metadata = manifest["metadata"]

    assert metadata["name"] == "app-pod-4"
    assert metadata["namespace"] == "team-a"
    assert metadata["labels"] == {Config.MEMBERSHIP_LABEL: "app"}

    (ref,) = metadata["ownerReferences"]
    assert ref["kind"] == Config.KIND and ref["name"] == "app" and ref["uid"] == "1234"
    assert ref["controller"] is True and ref["blockOwnerDeletion"] is True
    assert ref["apiVersion"] == f"{Config.GROUP}/{Config.VERSION}"

    assert manifest["spec"]["containers"][0]["command"] == ["sleep", "3600"]
    assert manifest["spec"] is not DEFAULT_UNIT_TEMPLATE, "Template must be copied, not shared"

    print("✅ Unit manifest tests passed!")


def test_parse_unit_template():
    bare = parse_unit_template("""
containers:
  - name: worker
    image: nginx:1.27
""")
    assert bare["containers"][0]["image"] == "nginx:1.27"

    full = parse_unit_template("""
apiVersion: v1
kind: Pod
spec:
  restartPolicy: Never
  containers:
    - name: worker
      image: alpine
""")
    assert full["restartPolicy"] == "Never"

    assert parse_unit_template("") == DEFAULT_UNIT_TEMPLATE

    with pytest.raises(ValueError):
        parse_unit_template("containers: []")
    with pytest.raises(ValueError):
        parse_unit_template("- just\n- a list\n")


def test_load_unit_template_from_file():
    with tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.yaml') as f:
        f.write("containers:\n  - name: w\n    image: busybox:1.36\n")
        path = f.name

    try:
        template = load_unit_template(path)
        assert template["containers"][0]["image"] == "busybox:1.36"
    finally:
        os.unlink(path)

    assert load_unit_template("") == DEFAULT_UNIT_TEMPLATE


def test_create_units_uses_custom_template():
    cluster = FakeCluster()
    template = {"containers": [{"name": "w", "image": "nginx"}]}
    manager = UnitLifecycleManager(cluster, template=template, dry_run=False)

    created = manager.create_units(make_instance(), [], 2)

    assert created == ["app-pod-0", "app-pod-1"]
    assert cluster.pods[("team-a", "app-pod-1")]["spec"] == template


def test_create_batch_stops_at_first_failure():
    print("\n🧪 Testing partial create batch...")

    cluster = FakeCluster()
    cluster.fail_create_after = 1
    manager = UnitLifecycleManager(cluster, dry_run=False)

    with pytest.raises(PartialBatchError) as excinfo:
        manager.create_units(make_instance(3), [], 3)

    assert excinfo.value.action == "create"
    assert excinfo.value.applied == 1 and excinfo.value.attempted == 3
    assert cluster.created == ["app-pod-0"], "No creation is attempted after the failure"

    print("✅ Partial create batch tests passed!")


def test_create_skips_names_already_taken():
    cluster = FakeCluster()
    cluster.add_unlabeled_pod("team-a", "app-pod-0")
    cluster.add_unlabeled_pod("team-a", "app-pod-2")
    manager = UnitLifecycleManager(cluster, dry_run=False)

    created = manager.create_units(make_instance(2), [], 2)

    assert created == ["app-pod-1", "app-pod-3"], "Names answered with AlreadyExists are skipped"


def test_delete_units_skips_terminating():
    cluster = FakeCluster()
    for i in range(3):
        cluster.add_pod("team-a", f"app-pod-{i}", "app")
    observed = [
        Unit("app-pod-0", "team-a"),
        Unit("app-pod-1", "team-a"),
        Unit("app-pod-2", "team-a", terminating=True),
    ]
    manager = UnitLifecycleManager(cluster, dry_run=False)

    deleted = manager.delete_units(make_instance(1), observed, 1)

    assert deleted == ["app-pod-1"], "Terminating units are already on their way out"


def test_delete_already_gone_counts_as_deleted():
    cluster = FakeCluster()
    manager = UnitLifecycleManager(cluster, dry_run=False)

    deleted = manager.delete_units(make_instance(0), [Unit("app-pod-0", "team-a")], 1)

    assert deleted == ["app-pod-0"]


def test_dry_run_submits_nothing():
    cluster = FakeCluster()
    manager = UnitLifecycleManager(cluster, dry_run=True)

    assert manager.create_units(make_instance(), [], 2) == ["app-pod-0", "app-pod-1"]
    assert cluster.created == []


def main():
    """Run all tests"""
    return pytest.main([__file__, "-v"])


if __name__ == "__main__":
    sys.exit(main())
