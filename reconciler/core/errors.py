"""Error taxonomy for the reconciliation boundary"""

from typing import Optional


class SyncError(Exception):
    """Base class for failures the engine classifies and collects."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        issue_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.operation = operation
        self.issue_id = issue_id

    def with_context(
        self,
        *,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        issue_id: Optional[str] = None,
    ) -> "SyncError":
        """Fill in missing context without overwriting what the raiser set."""
        self.provider = self.provider or provider
        self.operation = self.operation or operation
        self.issue_id = self.issue_id or issue_id
        return self

    def __str__(self):
        parts = [self.message]
        context = ", ".join(
            f"{key}={value}"
            for key, value in (
                ("provider", self.provider),
                ("operation", self.operation),
                ("issue", self.issue_id),
            )
            if value
        )
        if context:
            parts.append(f"({context})")
        return " ".join(parts)


class RateLimitedError(SyncError):
    """Provider asked us to slow down; retried exactly once."""


class NotFoundError(SyncError):
    """Referenced project, issue, state or label is missing upstream."""


class TransportError(SyncError):
    """Network failure or 5xx from a provider."""


class FatalSyncError(SyncError):
    """Stops the run; whatever was accumulated so far is returned."""


class ConfigValidationError(ValueError):
    """Malformed configuration, rejected before the engine runs."""
