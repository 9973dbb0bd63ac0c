"""Status projection: publish the live unit names on the Instance"""

import logging
from typing import List

from .diff import order_units
from .models import Instance
from .store import InstanceStore, UnitStore

logger = logging.getLogger("appinstance-controller.status")


class StatusProjector:
    """Re-lists the Instance's units and writes their names to status.nodes"""

    def __init__(self, instances: InstanceStore, units: UnitStore):
        self.instances = instances
        self.units = units

    def observe(self, instance: Instance) -> List[str]:
        """Names of the live units currently labeled for the instance, in index order"""
        live = [unit for unit in self.units.list(instance.key) if unit.live]
        return [unit.name for unit in order_units(live, instance.name)]

    def project(self, instance: Instance) -> List[str]:
        """
        Persist the current set of live units to the Instance's status

        The write happens on every call, even when nothing changed. A failed
        write raises StoreError and leaves already-applied unit changes alone.

        Returns:
            The unit names that were written
        """
        names = self.observe(instance)
        if names != instance.observed_units:
            logger.info(f"Status of {instance.key} changes from {instance.observed_units} to {names}")
        self.instances.update_status(instance.key, names)
        return names
