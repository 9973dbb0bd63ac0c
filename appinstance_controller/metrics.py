"""Prometheus-compatible metrics for the controller"""

import time
import logging
import threading

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from .models import ReconciliationStats

logger = logging.getLogger("appinstance-controller.metrics")


class Metrics:
    """Simple in-memory metrics for Prometheus exposition"""

    def __init__(self):
        self._lock = threading.Lock()
        self.reconciliation_count = 0
        self.last_reconciliation_timestamp = 0
        self.units_created = 0
        self.units_deleted = 0
        self.error_count = 0
        self.last_error_timestamp = 0
        self.converged = {}

    def record_reconciliation(self, stats: ReconciliationStats):
        """Record metrics from a reconciliation pass"""
        with self._lock:
            self.reconciliation_count += 1
            self.last_reconciliation_timestamp = time.time()
            self.units_created += stats.units_created
            self.units_deleted += stats.units_deleted
            self.error_count += stats.errors
            if stats.errors > 0:
                self.last_error_timestamp = time.time()
            if stats.decision == "deleted":
                self.converged.pop(stats.key, None)
            elif stats.key:
                self.converged[stats.key] = stats.converged

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format"""
        with self._lock:
            instances = len(self.converged)
            converged = sum(1 for value in self.converged.values() if value)
            return f"""# HELP appinstance_controller_reconciliations_total Total number of reconciliation passes
# TYPE appinstance_controller_reconciliations_total counter
appinstance_controller_reconciliations_total {self.reconciliation_count}

# HELP appinstance_controller_last_reconciliation_timestamp Timestamp of last reconciliation
# TYPE appinstance_controller_last_reconciliation_timestamp gauge
appinstance_controller_last_reconciliation_timestamp {self.last_reconciliation_timestamp}

# HELP appinstance_controller_units_created_total Total units created
# TYPE appinstance_controller_units_created_total counter
appinstance_controller_units_created_total {self.units_created}

# HELP appinstance_controller_units_deleted_total Total units deleted
# TYPE appinstance_controller_units_deleted_total counter
appinstance_controller_units_deleted_total {self.units_deleted}

# HELP appinstance_controller_instances Number of instances seen by the controller
# TYPE appinstance_controller_instances gauge
appinstance_controller_instances {instances}

# HELP appinstance_controller_instances_converged Number of instances whose last pass converged
# TYPE appinstance_controller_instances_converged gauge
appinstance_controller_instances_converged {converged}

# HELP appinstance_controller_errors_total Total errors encountered
# TYPE appinstance_controller_errors_total counter
appinstance_controller_errors_total {self.error_count}

# HELP appinstance_controller_last_error_timestamp Timestamp of last error
# TYPE appinstance_controller_last_error_timestamp gauge
appinstance_controller_last_error_timestamp {self.last_error_timestamp}
"""


PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"


def create_metrics_app(metrics: Metrics) -> FastAPI:
    """FastAPI application exposing the controller metrics at /metrics"""
    app = FastAPI(title="appinstance-controller metrics", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/metrics", response_class=PlainTextResponse)
    def prometheus_metrics():
        return PlainTextResponse(metrics.export_prometheus(), media_type=PROMETHEUS_CONTENT_TYPE)

    return app


def serve_metrics(metrics: Metrics, port: int) -> uvicorn.Server:
    """Serve /metrics with uvicorn on a background thread; set server.should_exit to stop it"""
    server = uvicorn.Server(uvicorn.Config(
        create_metrics_app(metrics),
        host="0.0.0.0",
        port=port,
        log_level="warning",
    ))
    threading.Thread(target=server.run, name="metrics", daemon=True).start()
    logger.info(f"Serving metrics on :{port}/metrics")
    return server
