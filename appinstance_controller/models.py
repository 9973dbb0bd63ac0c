"""
Data models shared by every stage of a reconciliation pass

Instances and Units are plain snapshots of what the store returned; nothing
here is cached between passes.
"""

import re
from datetime import datetime
from typing import List, Optional
from dataclasses import dataclass, field, asdict

from .errors import InvalidInstanceError

UNIT_NAME_FORMAT = "{instance}-pod-{index}"


# ============================================================================
# IDENTITIES
# ============================================================================

@dataclass(frozen=True)
class InstanceKey:
    """Namespace + name, the unique key of an Instance"""
    namespace: str
    name: str

    def __str__(self):
        return f"{self.namespace}/{self.name}"


def unit_name(instance_name: str, index: int) -> str:
    """Deterministic Unit name for the given Instance and sequence index"""
    return UNIT_NAME_FORMAT.format(instance=instance_name, index=index)


def unit_index(instance_name: str, name: str) -> Optional[int]:
    """
    Recover the sequence index from a Unit name

    Args:
        instance_name: Name of the owning Instance
        name: Unit name to parse

    Returns:
        The index, or None if the name was not generated for this Instance
    """
    match = re.fullmatch(re.escape(instance_name) + r"-pod-(\d+)", name)
    if not match:
        return None
    return int(match.group(1))


# ============================================================================
# RESOURCES
# ============================================================================

@dataclass
class Instance:
    """Desired-state resource: target size plus the last reported unit names"""
    key: InstanceKey
    desired_size: int
    uid: str = ""
    observed_units: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def namespace(self) -> str:
        return self.key.namespace

    @classmethod
    def from_object(cls, obj: dict) -> "Instance":
        """
        Build an Instance from a custom object as returned by the API server

        Raises:
            InvalidInstanceError: if spec.size is missing, not an integer or negative
        """
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        key = InstanceKey(metadata.get("namespace", ""), metadata.get("name", ""))

        size = spec.get("size")
        if isinstance(size, bool) or not isinstance(size, int):
            raise InvalidInstanceError(f"{key}: spec.size must be an integer, got {size!r}")
        if size < 0:
            raise InvalidInstanceError(f"{key}: spec.size must not be negative, got {size}")

        return cls(
            key=key,
            desired_size=size,
            uid=metadata.get("uid", ""),
            observed_units=list(status.get("nodes") or []),
        )


@dataclass
class Unit:
    """A worker Pod labeled as belonging to an Instance"""
    name: str
    namespace: str
    terminating: bool = False

    @property
    def live(self) -> bool:
        return not self.terminating


# ============================================================================
# PASS STATISTICS
# ============================================================================

@dataclass
class ReconciliationStats:
    """Statistics for a single reconciliation pass"""
    key: str = ""
    decision: str = ""
    desired_size: int = 0
    observed_size: int = 0
    units_created: int = 0
    units_deleted: int = 0
    errors: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def converged(self) -> bool:
        return self.errors == 0 and self.observed_size == self.desired_size

    def duration_seconds(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def to_dict(self) -> dict:
        return {
            **asdict(self),
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_seconds': self.duration_seconds()
        }
