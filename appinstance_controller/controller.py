"""
AppInstance Controller for Kubernetes

Keeps the number of Pods owned by each AppInstance equal to its spec.size and
publishes their names in status.nodes.

Features:
- Watch-driven reconciliation of AppInstances and their Pods
- Periodic resync of every AppInstance
- Per-instance serialization with parallel workers across instances
- Exponential backoff requeue on store failures
- Structured logging with severity levels
- Dry-run mode support
- Prometheus metrics exposure
"""

import sys
import logging
import threading
from typing import List, Optional

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .config import Config, configure_logging, BLUE, GREEN, WHITE, RESET
from .errors import StoreError
from .lifecycle import UnitLifecycleManager, load_unit_template
from .metrics import Metrics, serve_metrics
from .models import InstanceKey, ReconciliationStats
from .reconciler import Reconciler
from .store import KubernetesStore
from .workqueue import WorkQueue

logger = logging.getLogger("appinstance-controller")

WATCH_RETRY_SECONDS = 5


# ============================================================================
# EVENT MAPPING
# ============================================================================

def instance_key_for_object(obj: dict) -> Optional[InstanceKey]:
    """Key of an AppInstance delivered by a custom object watch"""
    metadata = (obj or {}).get("metadata") or {}
    if not metadata.get("name") or not metadata.get("namespace"):
        return None
    return InstanceKey(metadata["namespace"], metadata["name"])


def instance_key_for_pod(pod) -> Optional[InstanceKey]:
    """
    Key of the AppInstance a Pod belongs to

    The controller owner reference wins; Pods without one are mapped through
    the membership label, the same selector the store lists units by.

    Returns:
        None for Pods that neither reference nor are labeled for an AppInstance
    """
    metadata = pod.metadata
    for ref in metadata.owner_references or []:
        if ref.controller and ref.kind == Config.KIND and ref.api_version == Config.api_version():
            return InstanceKey(metadata.namespace, ref.name)
    owner = (metadata.labels or {}).get(Config.MEMBERSHIP_LABEL)
    if owner:
        return InstanceKey(metadata.namespace, owner)
    return None


# ============================================================================
# CONTROLLER
# ============================================================================

class AppInstanceController:
    """
    Main controller: turns watch events into reconciliation passes
    """

    def __init__(self, store: KubernetesStore, reconciler: Reconciler,
                 queue: WorkQueue = None, metrics: Metrics = None, workers: int = None):
        self.store = store
        self.reconciler = reconciler
        self.queue = queue or WorkQueue()
        self.metrics = metrics or reconciler.metrics or Metrics()
        if reconciler.metrics is None:
            reconciler.metrics = self.metrics
        self.workers = workers or Config.WORKERS
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._watches: List[watch.Watch] = []
        logger.info("AppInstance Controller initialized")

    # -- triggers -----------------------------------------------------------

    def enqueue_all(self):
        """Queue every AppInstance for a pass"""
        try:
            keys = self.store.list_instance_keys()
        except StoreError as e:
            logger.error(f"Resync failed: {e}")
            return
        for key in keys:
            self.queue.add(key)
        logger.info(f"{BLUE}Resync queued {len(keys)} {Config.PLURAL}{RESET}")

    def handle_instance_event(self, event: dict):
        key = instance_key_for_object(event.get("object"))
        if key is None:
            return
        logger.debug(f"{event.get('type')} {Config.KIND} {key}")
        self.queue.add(key)

    def handle_unit_event(self, event: dict):
        key = instance_key_for_pod(event["object"])
        if key is None:
            return
        logger.debug(f"{event.get('type')} pod {event['object'].metadata.name} -> {key}")
        self.queue.add(key)

    # -- workers ------------------------------------------------------------

    def process_next_item(self) -> bool:
        """
        Take one key off the queue and reconcile it

        Returns:
            False once the queue is shut down
        """
        key = self.queue.get()
        if key is None:
            return False

        try:
            stats = self.reconciler.reconcile(key)
            self.queue.forget(key)
            self._log_summary(stats)
        except StoreError as e:
            logger.error(f"Reconciliation of {key} failed: {e}")
            self.queue.add_rate_limited(key)
        except Exception as e:
            logger.error(f"Unexpected error reconciling {key}: {e}", exc_info=True)
            self.queue.add_rate_limited(key)
        finally:
            self.queue.done(key)
        return True

    def _log_summary(self, stats: ReconciliationStats):
        if not stats.units_created and not stats.units_deleted and not stats.errors:
            return
        logger.info(f"{WHITE}Reconciliation Summary for {stats.key}:{RESET}")
        logger.info(f"  • Decision: {stats.decision}")
        logger.info(f"  • Units created: {stats.units_created}")
        logger.info(f"  • Units deleted: {stats.units_deleted}")
        logger.info(f"  • Live units: {stats.observed_size}/{stats.desired_size}")
        logger.info(f"  • Errors: {stats.errors}")
        logger.info(f"  • Duration: {stats.duration_seconds():.2f}s")

    def _worker(self):
        while self.process_next_item():
            pass

    # -- watches ------------------------------------------------------------

    def _instance_stream(self, w: watch.Watch):
        api = self.store.custom_api
        if Config.NAMESPACE:
            return w.stream(api.list_namespaced_custom_object, Config.GROUP, Config.VERSION,
                            Config.NAMESPACE, Config.PLURAL,
                            timeout_seconds=Config.WATCH_TIMEOUT_SECONDS)
        return w.stream(api.list_cluster_custom_object, Config.GROUP, Config.VERSION, Config.PLURAL,
                        timeout_seconds=Config.WATCH_TIMEOUT_SECONDS)

    def _unit_stream(self, w: watch.Watch):
        api = self.store.core_api
        if Config.NAMESPACE:
            return w.stream(api.list_namespaced_pod, Config.NAMESPACE,
                            label_selector=Config.MEMBERSHIP_LABEL,
                            timeout_seconds=Config.WATCH_TIMEOUT_SECONDS)
        return w.stream(api.list_pod_for_all_namespaces, label_selector=Config.MEMBERSHIP_LABEL,
                        timeout_seconds=Config.WATCH_TIMEOUT_SECONDS)

    def _watch(self, name: str, stream_factory, handler):
        while not self._stop.is_set():
            w = watch.Watch()
            self._watches.append(w)
            try:
                for event in stream_factory(w):
                    if self._stop.is_set():
                        break
                    if event.get("type") == "ERROR":
                        logger.warning(f"{name} watch returned an error event: {event.get('raw_object')}")
                        break
                    handler(event)
            except ApiException as e:
                logger.warning(f"{name} watch failed ({e.status} {e.reason}), restarting in {WATCH_RETRY_SECONDS}s")
                self._stop.wait(WATCH_RETRY_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in {name} watch: {e}", exc_info=True)
                self._stop.wait(WATCH_RETRY_SECONDS)
            finally:
                w.stop()
                self._watches.remove(w)

    def _resync(self):
        while not self._stop.wait(Config.SYNC_INTERVAL):
            self.enqueue_all()

    # -- lifecycle ----------------------------------------------------------

    def start(self):
        """Start watches, resync and worker threads"""
        logger.info(f"{GREEN}Controller started (DRY_RUN={Config.DRY_RUN}, "
                    f"namespace={Config.NAMESPACE or '<all>'}, workers={self.workers}){RESET}")
        logger.info(f"Sync interval: {Config.SYNC_INTERVAL}s")

        self.enqueue_all()
        targets = [
            ("watch-instances", lambda: self._watch(Config.KIND, self._instance_stream, self.handle_instance_event)),
            ("watch-units", lambda: self._watch("Pod", self._unit_stream, self.handle_unit_event)),
            ("resync", self._resync),
        ]
        targets += [(f"worker-{i}", self._worker) for i in range(self.workers)]
        for name, target in targets:
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def run(self):
        """Start the controller and block until stop() is called"""
        self.start()
        while not self._stop.wait(1):
            pass

    def stop(self):
        logger.info("Shutting down controller...")
        self._stop.set()
        self.queue.shutdown()
        for w in list(self._watches):
            w.stop()


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def build_controller() -> AppInstanceController:
    store = KubernetesStore()
    metrics = Metrics()
    lifecycle = UnitLifecycleManager(store, template=load_unit_template())
    reconciler = Reconciler(store, store, lifecycle=lifecycle, metrics=metrics)
    return AppInstanceController(store, reconciler, metrics=metrics)


def main():
    """Main entry point"""
    configure_logging()
    controller = None
    metrics_server = None
    try:
        controller = build_controller()
        if Config.METRICS_PORT:
            metrics_server = serve_metrics(controller.metrics, Config.METRICS_PORT)
        controller.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if controller:
            controller.stop()
        if metrics_server:
            metrics_server.should_exit = True


if __name__ == "__main__":
    main()
