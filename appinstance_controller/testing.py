"""
In-memory store for exercising reconciliation passes without a cluster

FakeCluster implements both store interfaces, records every mutating call and
can inject failures. delete_instance() plays the part of the garbage
collector: it removes every unit whose controller reference points at the
deleted Instance.
"""

from typing import Dict, List, Optional

from .config import Config
from .errors import StoreError, UnitExistsError
from .models import Instance, InstanceKey, Unit
from .store import InstanceStore, UnitStore


class FakeCluster(InstanceStore, UnitStore):

    def __init__(self, reverse_listing: bool = False):
        self.instances: Dict[InstanceKey, Instance] = {}
        self.pods: Dict[tuple, dict] = {}
        self.terminating: set = set()
        self.reverse_listing = reverse_listing
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.status_updates: List[List[str]] = []
        self.fail_create_after: Optional[int] = None
        self.fail_delete_after: Optional[int] = None
        self.fail_status = False
        self.fail_get = False
        self._uid = 0

    # -- test setup ---------------------------------------------------------

    def add_instance(self, namespace: str, name: str, size: int) -> InstanceKey:
        self._uid += 1
        key = InstanceKey(namespace, name)
        self.instances[key] = Instance(key=key, desired_size=size, uid=f"uid-{self._uid}")
        return key

    def set_size(self, key: InstanceKey, size: int):
        self.instances[key].desired_size = size

    def add_pod(self, namespace: str, name: str, owner: str, owner_uid: str = "", terminating: bool = False):
        self.pods[(namespace, name)] = {
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": {Config.MEMBERSHIP_LABEL: owner},
                "ownerReferences": [{"kind": Config.KIND, "name": owner, "uid": owner_uid, "controller": True}],
            }
        }
        if terminating:
            self.terminating.add((namespace, name))

    def add_unlabeled_pod(self, namespace: str, name: str):
        """A pod outside every Instance's membership label"""
        self.pods[(namespace, name)] = {"metadata": {"name": name, "namespace": namespace, "labels": {}}}

    def remove_pod(self, namespace: str, name: str):
        """Out-of-band deletion, not recorded as a controller delete"""
        self.pods.pop((namespace, name), None)
        self.terminating.discard((namespace, name))

    def delete_instance(self, key: InstanceKey):
        """Delete an Instance and cascade to the units it controls"""
        instance = self.instances.pop(key)
        for pod_key, manifest in list(self.pods.items()):
            refs = manifest["metadata"].get("ownerReferences", [])
            if any(ref.get("controller") and ref.get("uid") == instance.uid for ref in refs):
                del self.pods[pod_key]
                self.terminating.discard(pod_key)

    def pod_names(self, key: InstanceKey) -> List[str]:
        return sorted(unit.name for unit in self.list(key))

    # -- InstanceStore ------------------------------------------------------

    def get(self, key: InstanceKey) -> Optional[Instance]:
        if self.fail_get:
            raise StoreError("injected get failure")
        instance = self.instances.get(key)
        if instance is None:
            return None
        return Instance(key=instance.key, desired_size=instance.desired_size, uid=instance.uid,
                        observed_units=list(instance.observed_units))

    def update_status(self, key: InstanceKey, unit_names: List[str]):
        if self.fail_status:
            raise StoreError("injected status failure")
        self.instances[key].observed_units = list(unit_names)
        self.status_updates.append(list(unit_names))

    # -- UnitStore ----------------------------------------------------------

    def list(self, key: InstanceKey) -> List[Unit]:
        units = [
            Unit(name=name, namespace=namespace,
                 terminating=(namespace, name) in self.terminating)
            for (namespace, name), manifest in sorted(self.pods.items())
            if namespace == key.namespace
            and manifest["metadata"]["labels"].get(Config.MEMBERSHIP_LABEL) == key.name
        ]
        if self.reverse_listing:
            units.reverse()
        return units

    def create(self, manifest: dict):
        if self.fail_create_after is not None and len(self.created) >= self.fail_create_after:
            raise StoreError("injected create failure")
        metadata = manifest["metadata"]
        pod_key = (metadata["namespace"], metadata["name"])
        if pod_key in self.pods:
            raise UnitExistsError(f"pod {metadata['name']} already exists")
        self.pods[pod_key] = manifest
        self.created.append(metadata["name"])

    def delete(self, namespace: str, name: str) -> bool:
        if self.fail_delete_after is not None and len(self.deleted) >= self.fail_delete_after:
            raise StoreError("injected delete failure")
        self.deleted.append(name)
        if (namespace, name) not in self.pods:
            return False
        del self.pods[(namespace, name)]
        self.terminating.discard((namespace, name))
        return True
