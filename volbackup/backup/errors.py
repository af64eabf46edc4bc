"""
Error taxonomy for the backup engine.

Routes translate these into HTTP status codes; the scheduler and the sweeps
catch them per item so one failure never aborts its siblings.
"""


class BackupManagerError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigurationError(BackupManagerError):
    """Raised when required configuration (e.g. the storage root) is missing."""
    pass


class ArchivalError(BackupManagerError):
    """Raised when producing an archive fails."""
    pass


class ArchivalWarning(UserWarning):
    """
    A benign archiving condition: a source file vanished or changed while
    being read. Collected and logged, never raised.
    """
    pass


class NotFoundError(BackupManagerError, LookupError):
    """Raised when a volume, backup, schedule or group does not exist."""
    pass


class PreconditionError(BackupManagerError):
    """Raised when an operation is not allowed in the current state."""
    pass


class GroupRunInProgressError(PreconditionError):
    """Raised when a group already has a run in flight and overlap is disabled."""
    pass


class InvalidTransitionError(BackupManagerError):
    """Raised when mutating a backup or run that already reached a terminal status."""
    pass


class StorageError(BackupManagerError):
    """Raised when a storage operation fails."""
    pass


class StorageUnavailableError(StorageError):
    """Raised when the storage root cannot be reached at all."""
    pass
