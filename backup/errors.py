"""Error hierarchy for backup operations."""
from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""

    #: Short user-facing message; subclasses override it.
    user_message = "An internal error occurred while handling the backup."


class StoreUninitialized(BackupError):
    """Raised when the relational store has not been opened yet."""

    user_message = "The local database is not ready yet. Try again in a moment."


class FormatError(BackupError):
    """Raised when supplied bytes fail the signature or structural checks."""

    user_message = "The selected file is not a valid backup."


class MissingSnapshotEntry(FormatError):
    """Raised when an archive does not contain the database snapshot."""

    user_message = "The selected archive does not contain a database backup."


class DestinationUnavailable(BackupError):
    """Raised when the requested delivery mechanism is not supported here."""

    user_message = "Saving to a folder is not supported on this platform. Use a download instead."


class UserCancelled(BackupError):
    """Raised when the user aborts the folder consent prompt.

    Not a failure; operations turn it into a ``cancelled`` outcome.
    """

    user_message = "Folder selection was cancelled."


class EngineError(BackupError):
    """Raised when the relational engine rejects bytes that passed validation."""

    user_message = "The database engine could not load the backup. Your current data was kept."


__all__ = [
    "BackupError",
    "DestinationUnavailable",
    "EngineError",
    "FormatError",
    "MissingSnapshotEntry",
    "StoreUninitialized",
    "UserCancelled",
]
