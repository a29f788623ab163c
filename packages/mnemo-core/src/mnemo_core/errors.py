from __future__ import annotations


class MnemoError(Exception):
    """Base exception for all Mnemo errors."""


# ── Validation Errors ────────────────────────────────────────────────

class ValidationError(MnemoError):
    """Malformed query, options or entry. Raised before any I/O."""


# ── Storage Errors ───────────────────────────────────────────────────

class StorageError(MnemoError):
    """I/O failure in a memory store backend."""


class StorageUnavailableError(StorageError):
    """Backend is not reachable or not configured."""


class PartialDeletionError(StorageError):
    """A batch delete only partially succeeded.

    ``failed_ids`` lists the ids that could not be removed; the remaining
    deletions were applied and are not rolled back.
    """

    def __init__(
        self,
        message: str,
        *,
        failed_ids: list[str],
        deleted_count: int = 0,
    ) -> None:
        super().__init__(message)
        self.failed_ids = list(failed_ids)
        self.deleted_count = deleted_count


# ── Entry Errors ─────────────────────────────────────────────────────

class EntryNotFoundError(MnemoError):
    """Entry does not exist in the requested scope."""


# ── Config Errors ────────────────────────────────────────────────────

class ConfigError(MnemoError):
    """Invalid or missing configuration."""
