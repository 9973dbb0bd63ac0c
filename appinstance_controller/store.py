"""
External store access for Instances and Units

The reconciler only talks to the two store interfaces below. KubernetesStore
implements both against the API server; tests use an in-memory fake.
"""

import logging
from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .config import Config
from .errors import StoreError, UnitExistsError
from .models import Instance, InstanceKey, Unit

logger = logging.getLogger("appinstance-controller.store")


# ============================================================================
# STORE INTERFACES
# ============================================================================

class InstanceStore:
    """Read desired state and persist status for Instances"""

    def get(self, key: InstanceKey) -> Optional[Instance]:
        """Return the Instance, or None if it no longer exists"""
        raise NotImplementedError

    def update_status(self, key: InstanceKey, unit_names: List[str]):
        """Replace status.nodes with the given unit names"""
        raise NotImplementedError


class UnitStore:
    """List, create and delete the Units that belong to an Instance"""

    def list(self, key: InstanceKey) -> List[Unit]:
        raise NotImplementedError

    def create(self, manifest: dict):
        raise NotImplementedError

    def delete(self, namespace: str, name: str) -> bool:
        """Delete a unit; returns False if it was already gone"""
        raise NotImplementedError


# ============================================================================
# KUBERNETES IMPLEMENTATION
# ============================================================================

def load_kube_config():
    """Prefer in-cluster credentials, fall back to the local kubeconfig"""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.warning("Failed to load in-cluster config, trying local kubeconfig")
        config.load_kube_config()


class KubernetesStore(InstanceStore, UnitStore):
    """Handles all Kubernetes API interactions for AppInstances and their Pods"""

    def __init__(self, custom_api: client.CustomObjectsApi = None, core_api: client.CoreV1Api = None):
        if custom_api is None or core_api is None:
            load_kube_config()
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.core_api = core_api or client.CoreV1Api()

    # -- instances ----------------------------------------------------------

    def get(self, key: InstanceKey) -> Optional[Instance]:
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                Config.GROUP, Config.VERSION, key.namespace, Config.PLURAL, key.name
            )
        except ApiException as e:
            if e.status == 404:
                logger.info(f"{Config.KIND} {key} not found, assuming it was deleted")
                return None
            raise StoreError(f"Error fetching {Config.KIND} {key}: {e.reason}", cause=e) from e
        return Instance.from_object(obj)

    def list_instance_keys(self) -> List[InstanceKey]:
        """List the keys of every Instance in the watched namespace(s)"""
        try:
            if Config.NAMESPACE:
                result = self.custom_api.list_namespaced_custom_object(
                    Config.GROUP, Config.VERSION, Config.NAMESPACE, Config.PLURAL
                )
            else:
                result = self.custom_api.list_cluster_custom_object(
                    Config.GROUP, Config.VERSION, Config.PLURAL
                )
        except ApiException as e:
            raise StoreError(f"Error listing {Config.PLURAL}: {e.reason}", cause=e) from e

        return [
            InstanceKey(item["metadata"]["namespace"], item["metadata"]["name"])
            for item in result.get("items", [])
        ]

    def update_status(self, key: InstanceKey, unit_names: List[str]):
        body = {"status": {"nodes": list(unit_names)}}
        try:
            self.custom_api.patch_namespaced_custom_object_status(
                Config.GROUP, Config.VERSION, key.namespace, Config.PLURAL, key.name, body
            )
        except ApiException as e:
            raise StoreError(f"Error updating status of {Config.KIND} {key}: {e.reason}", cause=e) from e

    # -- units --------------------------------------------------------------

    def list(self, key: InstanceKey) -> List[Unit]:
        selector = f"{Config.MEMBERSHIP_LABEL}={key.name}"
        try:
            pods = self.core_api.list_namespaced_pod(key.namespace, label_selector=selector)
        except ApiException as e:
            raise StoreError(f"Error listing pods for {key}: {e.reason}", cause=e) from e

        return [
            Unit(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace or key.namespace,
                terminating=pod.metadata.deletion_timestamp is not None,
            )
            for pod in pods.items
        ]

    def create(self, manifest: dict):
        metadata = manifest["metadata"]
        try:
            self.core_api.create_namespaced_pod(metadata["namespace"], manifest)
        except ApiException as e:
            if e.status == 409:
                raise UnitExistsError(f"Pod {metadata['name']} already exists", cause=e) from e
            raise StoreError(f"Error creating pod {metadata['name']}: {e.reason}", cause=e) from e

    def delete(self, namespace: str, name: str) -> bool:
        try:
            self.core_api.delete_namespaced_pod(name, namespace)
        except ApiException as e:
            if e.status == 404:
                logger.warning(f"Pod {namespace}/{name} already gone")
                return False
            raise StoreError(f"Error deleting pod {namespace}/{name}: {e.reason}", cause=e) from e
        return True
