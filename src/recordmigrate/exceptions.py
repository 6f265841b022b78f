"""Custom exception classes for recordmigrate."""


class RecordMigrateError(Exception):
    """Base exception for all recordmigrate errors."""

    pass


class ConfigError(RecordMigrateError):
    """Exception raised for configuration errors."""

    pass


class RepositoryError(RecordMigrateError):
    """Base exception for repository access errors."""

    pass


class RepositoryConnectionError(RepositoryError):
    """Exception raised when a repository session cannot be established."""

    pass


class AuthenticationError(RepositoryConnectionError):
    """Exception raised when a repository rejects the session credentials."""

    pass


class RepositoryOperationFailed(RepositoryError):
    """Exception raised when a create/fetch/save/query against a repository fails."""

    pass


class ObjectNotFoundError(RepositoryOperationFailed):
    """Exception raised when an object id or path does not resolve."""

    pass


class PoolExhaustedError(RepositoryError):
    """Exception raised when no session becomes available within the acquire timeout."""

    def __init__(self, message: str = "Timeout waiting for available session", timeout: float | None = None):
        """Initialize pool exhaustion error.

        Args:
            message: Error message
            timeout: Seconds waited before giving up
        """
        self.timeout = timeout
        if timeout is not None:
            message = f"{message} after {timeout:g}s"
        super().__init__(message)


class CleanupFailed(RecordMigrateError):
    """Exception raised when a conflicting object from a prior run cannot be cleared."""

    pass


class ContentOperationTimeout(RecordMigrateError):
    """Exception raised when a content-set or save call exceeds its time bound."""

    def __init__(self, operation: str, timeout: float, target: str = ""):
        """Initialize content timeout error.

        Args:
            operation: Name of the timed-out operation (e.g. "set_content", "save")
            timeout: Bound in seconds that was exceeded
            target: Object or file the operation was working on
        """
        self.operation = operation
        self.timeout = timeout
        self.target = target
        detail = f" for {target}" if target else ""
        super().__init__(f"{operation} timed out after {timeout:g}s{detail}")


class AclApplicationFailed(RecordMigrateError):
    """Exception raised when every ACL apply tier has failed for a folder."""

    pass


class AccessorNotFound(RecordMigrateError):
    """Exception raised when a workflow user or group does not exist in the target."""

    pass


class HierarchyError(RecordMigrateError):
    """Exception raised when the folder hierarchy root cannot be resolved or created."""

    pass
