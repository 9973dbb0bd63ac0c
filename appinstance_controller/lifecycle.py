"""
Unit lifecycle management

Creates and deletes Units against the external store. Each batch stops at the
first failure; whatever was applied stays applied and the next pass picks up
the remaining difference.
"""

import copy
import logging
from pathlib import Path
from typing import List, Sequence

import yaml

from .config import Config, WHITE, RESET
from .diff import next_unit_indices, select_units_to_remove
from .errors import PartialBatchError, StoreError, UnitExistsError
from .models import Instance, Unit, unit_name
from .store import UnitStore

logger = logging.getLogger("appinstance-controller.lifecycle")

DEFAULT_UNIT_TEMPLATE = {
    "containers": [
        {
            "name": "busybox",
            "image": "busybox",
            "command": ["sleep", "3600"],
        }
    ]
}


def parse_unit_template(yaml_content: str) -> dict:
    """
    Parse a Pod spec template from YAML

    The document may be a bare Pod spec or a full Pod manifest with a `spec`
    key; only the spec is used.

    Args:
        yaml_content: YAML text of the template

    Returns:
        Pod spec dictionary
    """
    if not yaml_content or not yaml_content.strip():
        logger.warning("Empty unit template, using the default busybox template")
        return copy.deepcopy(DEFAULT_UNIT_TEMPLATE)

    parsed = yaml.safe_load(yaml_content)
    if not isinstance(parsed, dict):
        raise ValueError("Unit template must be a YAML mapping")
    if parsed.get("kind") == "Pod" or "spec" in parsed:
        parsed = parsed.get("spec") or {}
    if not parsed.get("containers"):
        raise ValueError("Unit template must define at least one container")
    return parsed


def load_unit_template(path: str = None) -> dict:
    """Load the unit template from Config.UNIT_TEMPLATE_FILE, or the default"""
    path = path if path is not None else Config.UNIT_TEMPLATE_FILE
    if not path:
        return copy.deepcopy(DEFAULT_UNIT_TEMPLATE)
    logger.info(f"Loading unit template from {path}")
    return parse_unit_template(Path(path).read_text())


def owner_reference(instance: Instance) -> dict:
    """Controller reference that lets the garbage collector cascade deletes"""
    return {
        "apiVersion": Config.api_version(),
        "kind": Config.KIND,
        "name": instance.name,
        "uid": instance.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def build_unit_manifest(instance: Instance, index: int, template: dict) -> dict:
    """Pod manifest for the unit at `index`, labeled and owned by `instance`"""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": unit_name(instance.name, index),
            "namespace": instance.namespace,
            "labels": {Config.MEMBERSHIP_LABEL: instance.name},
            "ownerReferences": [owner_reference(instance)],
        },
        "spec": copy.deepcopy(template),
    }


class UnitLifecycleManager:
    """Executes grow and shrink actions for one Instance at a time"""

    def __init__(self, units: UnitStore, template: dict = None, dry_run: bool = None):
        self.units = units
        self.template = template if template is not None else copy.deepcopy(DEFAULT_UNIT_TEMPLATE)
        self.dry_run = Config.DRY_RUN if dry_run is None else dry_run

    def create_units(self, instance: Instance, observed: Sequence[Unit], count: int) -> List[str]:
        """
        Create `count` new units for the instance

        A name held by a Pod outside the membership label (HTTP 409) is
        skipped and the next free index is tried instead.

        Args:
            instance: Owning Instance
            observed: Every unit currently listed for the instance, terminating ones included
            count: Number of units to add

        Returns:
            Names of the units created

        Raises:
            PartialBatchError: on the first failed creation; later ones are not attempted
        """
        current_size = sum(1 for unit in observed if unit.live)
        taken = {unit.name for unit in observed}

        created = []
        start = current_size
        while len(created) < count:
            (index,) = next_unit_indices(instance.name, start, 1, taken)
            start = index + 1
            manifest = build_unit_manifest(instance, index, self.template)
            name = manifest["metadata"]["name"]
            if self.dry_run:
                logger.info(f"[DRY-RUN] Would create unit: {instance.namespace}/{name}")
                created.append(name)
                continue
            try:
                self.units.create(manifest)
            except UnitExistsError:
                logger.warning(f"Unit name {instance.namespace}/{name} is held by an unlabeled pod, skipping it")
                taken.add(name)
                continue
            except StoreError as e:
                logger.error(f"Failed to create unit {instance.namespace}/{name}: {e}")
                raise PartialBatchError("create", len(created), count, cause=e) from e
            logger.info(f"{WHITE}Created unit: {instance.namespace}/{name}{RESET}")
            created.append(name)
        return created

    def delete_units(self, instance: Instance, observed: Sequence[Unit], count: int) -> List[str]:
        """
        Delete `count` live units, highest index first

        Returns:
            Names of the units deleted (including ones that were already gone)

        Raises:
            PartialBatchError: on the first failed deletion
        """
        live = [unit for unit in observed if unit.live]
        victims = select_units_to_remove(live, instance.name, count)

        deleted = []
        for unit in victims:
            if self.dry_run:
                logger.info(f"[DRY-RUN] Would delete unit: {unit.namespace}/{unit.name}")
                deleted.append(unit.name)
                continue
            try:
                self.units.delete(unit.namespace, unit.name)
            except StoreError as e:
                logger.error(f"Failed to delete unit {unit.namespace}/{unit.name}: {e}")
                raise PartialBatchError("delete", len(deleted), len(victims), cause=e) from e
            logger.info(f"{WHITE}Deleted unit: {unit.namespace}/{unit.name}{RESET}")
            deleted.append(unit.name)
        return deleted
