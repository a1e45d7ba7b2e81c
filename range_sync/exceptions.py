from typing import Optional


class RangeSyncError(RuntimeError):
    """Base class for all errors raised by range_sync."""


class ConfigError(RangeSyncError):
    """Invalid or missing configuration. Always fatal to the run."""


class RequestFailed(RangeSyncError):
    """An outbound HTTP call exhausted its retry budget."""

    def __init__(
        self,
        method: str,
        url: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        self.method = method
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        self.status_code = status_code
        detail = f"HTTP {status_code}" if status_code is not None else str(last_error)
        super().__init__(f"{method} {url} failed after {attempts} attempt(s): {detail}")


class InvalidResponse(RangeSyncError):
    """A response arrived but its body is not the JSON shape the caller expects."""


class SourceUnavailable(RangeSyncError):
    """A single range source could not be fetched or decoded."""

    def __init__(self, source_name: str, reason: object):
        self.source_name = source_name
        self.reason = reason
        super().__init__(f"Range source {source_name!r} unavailable: {reason}")


class NoRangesRetrieved(RangeSyncError):
    """No source produced a single range. Reconciling would delete every rule."""


class InventoryFetchFailed(RangeSyncError):
    """The existing rule inventory could not be listed."""


class RuleOperationFailed(RangeSyncError):
    """A single create/delete call against the policy store failed."""

    def __init__(self, operation: str, rule_name: str, cidr: str, reason: object):
        self.operation = operation
        self.rule_name = rule_name
        self.cidr = cidr
        self.reason = reason
        super().__init__(f"Failed to {operation} rule {rule_name} ({cidr}): {reason}")


class PersistenceFailed(RangeSyncError):
    """The state file could not be written."""
