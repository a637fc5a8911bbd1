"""Exception types shared across the sync engine and its clients."""

from __future__ import annotations

from typing import Any, Optional


class SyncError(Exception):
    """Base class for sync errors."""


class ConfigurationError(SyncError):
    """Sync configuration is unreadable or structurally wrong. Always fatal."""


class ValidationFailedError(ConfigurationError):
    """Pre-flight field validation failed; carries the full result."""

    def __init__(self, result: Any):
        self.result = result
        count = len(getattr(result, "errors", []) or [])
        super().__init__(f"JPD field validation failed with {count} error(s)")


class SourceApiError(SyncError):
    """Non-2xx response from the JPD/Jira REST API."""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class NotFoundError(SourceApiError):
    """The requested JPD resource does not exist (HTTP 404)."""


class TransitionNotAvailableError(SyncError):
    """No workflow transition from the current status reaches the requested one."""

    def __init__(self, issue_key: str, target_status: str, available: Optional[list] = None):
        self.issue_key = issue_key
        self.target_status = target_status
        self.available = list(available or [])
        super().__init__(
            f'No valid transition found to status "{target_status}" for {issue_key}'
            f" (available: {', '.join(self.available) or 'none'})"
        )
