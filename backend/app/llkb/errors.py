"""
LLKB exception types.

Public operations convert these into result values; they are raised only
inside the package or from the few fail-closed paths.
"""


class LLKBError(Exception):
    """Base class for knowledge store errors."""
    pass


class LockTimeoutError(LLKBError):
    """Raised when a store lock could not be acquired within the wait limit."""

    def __init__(self, path: str, max_wait_ms: int):
        self.path = path
        self.max_wait_ms = max_wait_ms
        super().__init__(f"Could not acquire lock within {max_wait_ms}ms")


class MigrationError(LLKBError):
    """Raised when a document cannot be migrated to the current schema."""
    pass


class DocumentValidationError(LLKBError):
    """Raised when a document does not match its declared schema."""

    def __init__(self, path: str, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"Invalid document {path}: {detail}")


class ConfigurationError(LLKBError):
    """Raised when config.yml exists but cannot be parsed."""
    pass
