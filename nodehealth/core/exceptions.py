# nodehealth/core/exceptions.py
"""Exception hierarchy for the node health check controller.

Configuration errors end up as status conditions on the policy, transient
errors abort the current pass and are retried by the work queue.
"""

from typing import Any, Dict, Optional


class NodeHealthError(Exception):
    """Base exception for all controller errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigurationError(NodeHealthError):
    """The policy spec cannot be acted upon."""


class SelectorError(ConfigurationError):
    """Raised when a label selector is malformed."""


class InvalidMinHealthyError(ConfigurationError):
    """Raised when minHealthy is negative or not a valid percentage."""


class TransientStoreError(NodeHealthError):
    """Raised when a read or write against the object store fails."""


class StatusConflictError(TransientStoreError):
    """Raised when a status write loses an optimistic concurrency race."""


class RemediationError(TransientStoreError):
    """Raised when a remediation resource cannot be created or read."""
