"""
Error types for the telemetry cleaner.

Scanning phases are best-effort and record Access/Parse problems instead of
raising them for individual files. Mutation phases are fail-closed: Integrity,
Policy and Exhaustion errors stop a backup or removal.
"""

from typing import Optional


class CleanerError(Exception):
    """Base class for all cleaner errors."""

    kind = "error"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} ({self.path})"
        return self.message


class AccessError(CleanerError):
    """A path is missing or cannot be read."""

    kind = "access"


class ParseError(CleanerError):
    """Malformed JSON, SQL schema or policy content."""

    kind = "parse"


class IntegrityError(CleanerError):
    """Backup checksum or archive content does not match its metadata."""

    kind = "integrity"


class PolicyError(CleanerError):
    """A safety rule or removal policy blocks the operation."""

    kind = "policy"

    def __init__(self, message: str, path: Optional[str] = None, issues: Optional[list] = None):
        super().__init__(message, path)
        self.issues = issues or []


class ExhaustionError(CleanerError):
    """Disk space or a configured size ceiling would be exceeded."""

    kind = "exhaustion"


class OperationCancelled(CleanerError):
    """The caller cancelled the operation between two steps."""

    kind = "cancelled"
