"""
Reconciliation pass for a single Instance

One pass reads the Instance and its units, decides whether to grow or shrink,
applies the unit changes and publishes the resulting unit names in status.
Nothing survives between passes; every pass starts from the store.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from .config import Config, GREEN, YELLOW, RESET
from .diff import Action, compute_decision
from .errors import InvalidInstanceError, PartialBatchError, StoreError
from .lifecycle import UnitLifecycleManager
from .metrics import Metrics
from .models import Instance, InstanceKey, ReconciliationStats, Unit
from .status import StatusProjector
from .store import InstanceStore, UnitStore

logger = logging.getLogger("appinstance-controller.reconciler")


def read_state(instances: InstanceStore, units: UnitStore, key: InstanceKey) -> Optional[Tuple[Instance, List[Unit]]]:
    """
    Fetch the Instance and every unit labeled for it

    Returns:
        (instance, units), or None when the Instance no longer exists

    Raises:
        StoreError: on any retrieval failure other than not-found
        InvalidInstanceError: when the Instance has no usable size
    """
    instance = instances.get(key)
    if instance is None:
        return None
    return instance, units.list(key)


class Reconciler:
    """
    Drives one Instance toward its desired size per call to reconcile()

    Store handles are injected so passes can run against any backend.
    """

    def __init__(self, instances: InstanceStore, units: UnitStore,
                 lifecycle: UnitLifecycleManager = None, metrics: Metrics = None,
                 dry_run: bool = None):
        self.instances = instances
        self.units = units
        self.dry_run = Config.DRY_RUN if dry_run is None else dry_run
        self.lifecycle = lifecycle or UnitLifecycleManager(units, dry_run=self.dry_run)
        self.projector = StatusProjector(instances, units)
        self.metrics = metrics

    def reconcile(self, key: InstanceKey) -> ReconciliationStats:
        """
        Run a single reconciliation pass

        Args:
            key: Instance to reconcile

        Returns:
            Statistics for the pass

        Raises:
            StoreError: when reading, a unit batch or the status write failed;
                the caller is expected to re-trigger the key later
        """
        stats = ReconciliationStats(key=str(key), start_time=datetime.now())
        try:
            self._reconcile(key, stats)
        except StoreError:
            stats.errors += 1
            raise
        finally:
            stats.end_time = datetime.now()
            if self.metrics:
                self.metrics.record_reconciliation(stats)
        return stats

    def _reconcile(self, key: InstanceKey, stats: ReconciliationStats):
        try:
            state = read_state(self.instances, self.units, key)
        except InvalidInstanceError as e:
            logger.error(f"Skipping {key}: {e}")
            stats.decision = "invalid"
            stats.errors += 1
            return

        if state is None:
            logger.info(f"{Config.KIND} {key} is gone, its units are left to the garbage collector")
            stats.decision = "deleted"
            return

        instance, units = state
        live = [unit for unit in units if unit.live]
        decision = compute_decision(instance.desired_size, len(live))
        stats.decision = decision.action.value
        stats.desired_size = instance.desired_size
        stats.observed_size = len(live)

        if decision.converged:
            logger.debug(f"{key} converged at {instance.desired_size} units")
        else:
            logger.info(f"{YELLOW}{key} converging: {len(live)} live units, "
                        f"{instance.desired_size} desired, {decision.action.value} by {decision.count}{RESET}")

        failure = self._apply(instance, units, decision, stats)

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would update status of {key}")
        else:
            try:
                names = self.projector.project(instance)
                stats.observed_size = len(names)
            except StoreError as e:
                logger.error(f"Failed to update status of {key}: {e}")
                if failure is None:
                    raise
                stats.errors += 1

        if failure is not None:
            raise failure

        if stats.converged:
            logger.info(f"{GREEN}{key} converged: {stats.observed_size} units{RESET}")

    def _apply(self, instance: Instance, units: List[Unit], decision, stats: ReconciliationStats) -> Optional[PartialBatchError]:
        try:
            if decision.action is Action.GROW:
                stats.units_created = len(self.lifecycle.create_units(instance, units, decision.count))
            elif decision.action is Action.SHRINK:
                stats.units_deleted = len(self.lifecycle.delete_units(instance, units, decision.count))
        except PartialBatchError as e:
            if e.action == "create":
                stats.units_created = e.applied
            else:
                stats.units_deleted = e.applied
            return e
        return None
