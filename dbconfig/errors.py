"""Error types raised by the store and surfaced at the API boundary."""


class DbConfigError(Exception):
    """Base error for dbconfig."""


class StoreError(DbConfigError):
    """A store operation failed. operation names the ConfigStore method."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class StoreUnavailableError(StoreError):
    """Connection or transaction failure in the configuration store."""


class StoreConflictError(StoreError):
    """A concurrent writer changed the same keys; the transaction was rolled back."""
