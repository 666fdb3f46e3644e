"""
Sync error taxonomy.

Every adapter and pipeline raises subclasses of SyncError. Batch loops catch
them per item and record ``error_entry(...)`` dicts in their summaries; only
invocation-level failures (NotConnected, ReportTimeout, ReportFatal) reach
the caller.
"""


class SyncError(Exception):
    """Base class for all sync failures."""

    code = "sync_error"
    retryable = False

    def __init__(self, message="", **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        return self.message or self.code


class AuthExpired(SyncError):
    """Provider rejected the access or refresh token."""

    code = "auth_expired"


class RateLimited(SyncError):
    """Provider throttling persisted past the retry budget."""

    code = "rate_limited"
    retryable = True

    def __init__(self, message="", retry_after=None, **context):
        super().__init__(message, **context)
        self.retry_after = retry_after


class ReportTimeout(SyncError):
    """Report never reached DONE within the polling budget."""

    code = "timeout"
    retryable = True


class ReportFatal(SyncError):
    """Report generation failed permanently."""

    code = "fatal"


class ValidationRejected(SyncError):
    """Document failed content checks. Skipped, not an error."""

    code = "validation_rejected"


class DuplicateInvoice(SyncError):
    """Invoice matched an existing one after extraction and was removed."""

    code = "duplicate"


class VaultError(SyncError):
    """Ciphertext could not be authenticated or decoded."""

    code = "vault_error"


class ExtractionUnavailable(SyncError):
    """Extraction service unreachable or replied with an unusable payload."""

    code = "extraction_unavailable"
    retryable = True


class StorageError(SyncError):
    """Document store operation failed."""

    code = "storage_error"
    retryable = True


class NotConnected(SyncError):
    """No usable credential exists for the requested operation."""

    code = "not_connected"


class ProviderError(SyncError):
    """Unexpected non-success response from a provider API."""

    code = "provider_error"
    retryable = True

    def __init__(self, message="", status_code=None, **context):
        super().__init__(message, **context)
        self.status_code = status_code


def error_entry(item, exc) -> dict:
    """Summary row for a per-item failure."""
    return {
        "item": item,
        "code": getattr(exc, "code", "unexpected"),
        "message": str(exc),
    }
