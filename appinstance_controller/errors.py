"""Error taxonomy for reconciliation passes"""


class StoreError(Exception):
    """A transient failure talking to the external store.

    The pass that hits it is abandoned; the dispatcher re-triggers the key later.
    """

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.cause = cause


class UnitExistsError(StoreError):
    """A unit name is already taken in the store (HTTP 409)"""


class PartialBatchError(StoreError):
    """A create/delete batch stopped at its first failing item"""

    def __init__(self, action: str, applied: int, attempted: int, cause: Exception = None):
        super().__init__(
            f"{action} batch aborted after {applied}/{attempted} units: {cause}",
            cause=cause
        )
        self.action = action
        self.applied = applied
        self.attempted = attempted


class InvalidInstanceError(ValueError):
    """The Instance object cannot be parsed into a desired state"""
