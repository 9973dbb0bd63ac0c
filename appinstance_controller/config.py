"""
Controller configuration and logging setup

All settings come from environment variables so the same image can be
deployed to any namespace without rebuilding.
"""

import os
import sys
import logging

# ANSI color codes
BLUE = "\033[94m"
RED = "\033[91m"
WHITE = "\033[97m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RESET = "\033[0m"

LOG_FORMAT = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'


class Config:
    """Controller configuration loaded from environment variables"""

    # Kubernetes settings (empty namespace watches every namespace)
    NAMESPACE = os.getenv("NAMESPACE", "")
    GROUP = os.getenv("CRD_GROUP", "mygroup.mydomain.com")
    VERSION = os.getenv("CRD_VERSION", "v1alpha1")
    PLURAL = os.getenv("CRD_PLURAL", "appinstances")
    KIND = os.getenv("CRD_KIND", "AppInstance")
    MEMBERSHIP_LABEL = os.getenv("MEMBERSHIP_LABEL", "app")

    # Controller settings
    SYNC_INTERVAL = int(os.getenv("SYNC_INTERVAL", "30"))
    WORKERS = int(os.getenv("WORKERS", "2"))
    DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"
    RETRY_BACKOFF_BASE = float(os.getenv("RETRY_BACKOFF_BASE", "2.0"))
    MAX_BACKOFF_SECONDS = float(os.getenv("MAX_BACKOFF_SECONDS", "300"))
    WATCH_TIMEOUT_SECONDS = int(os.getenv("WATCH_TIMEOUT_SECONDS", "300"))

    # Unit settings
    UNIT_TEMPLATE_FILE = os.getenv("UNIT_TEMPLATE_FILE", "")

    # Observability
    METRICS_PORT = int(os.getenv("METRICS_PORT", "0"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def api_version(cls) -> str:
        return f"{cls.GROUP}/{cls.VERSION}"


def configure_logging(level: str = None):
    """Configure structured logging on stdout for the whole process"""
    logging.basicConfig(
        level=getattr(logging, level or Config.LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )
