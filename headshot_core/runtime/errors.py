"""
Standardized error model with retry semantics.

Every failure the orchestration core can observe is classified by an
ErrorKind. Transient kinds are resolved internally by the retry policy;
permanent kinds end a job in the failed state; control-flow kinds describe
races between the dispatcher, the janitor and callers and are never shown
to end users as job failures.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable, machine-readable failure classification."""

    # Permanent
    INVALID_INPUT = "invalid_input"
    PROVIDER_PERMANENT = "provider_permanent"

    # Transient
    RATE_LIMITED = "rate_limited"
    PROVIDER_TIMEOUT = "provider_timeout"
    PROVIDER_TRANSIENT = "provider_transient"
    STORAGE_UNAVAILABLE = "storage_unavailable"

    # Control flow
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    NOT_READY = "not_ready"

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same operation can help."""
        return self in TRANSIENT_KINDS


TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.PROVIDER_TIMEOUT,
        ErrorKind.PROVIDER_TRANSIENT,
        ErrorKind.STORAGE_UNAVAILABLE,
    }
)


class ServiceError(Exception):
    """Base class for every error the core raises.

    `message_safe` may be shown to API callers and written to logs;
    `message_debug` and `cause` stay server-side. `debug_id` ties an API
    response to the matching log line.
    """

    retryable_default = False

    def __init__(
        self,
        kind: ErrorKind,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.kind = kind
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = self.retryable_default if retryable is None else retryable
        self.cause = cause
        self.debug_id = debug_id or uuid.uuid4().hex[:8]

    @property
    def code(self) -> str:
        return self.kind.value

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.kind.value!r}, {self.message_safe!r}, "
            f"retryable={self.retryable}, debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Public error body; never includes debug details."""
        return {"code": self.code, "message": self.message_safe, "debug_id": self.debug_id}


class RetryableError(ServiceError):
    """Trying the same operation again later may succeed."""

    retryable_default = True


class TerminalError(ServiceError):
    """Trying again cannot help."""


class InvalidInputError(TerminalError):
    """Rejected upload, unknown style or unusable source reference."""

    def __init__(self, message_safe: str, message_debug: str | None = None):
        super().__init__(ErrorKind.INVALID_INPUT, message_safe, message_debug=message_debug)


class StorageUnavailableError(RetryableError):
    """Artifact store read or write failed."""

    def __init__(self, message_safe: str, cause: Exception | None = None):
        super().__init__(
            ErrorKind.STORAGE_UNAVAILABLE,
            message_safe,
            message_debug=str(cause) if cause else None,
            cause=cause,
        )


class JobNotFoundError(TerminalError):
    """Raised when a job id is unknown (never created, or already purged)."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(ErrorKind.NOT_FOUND, f"Job not found: {job_id}")


class TransitionConflictError(TerminalError):
    """Raised when a status transition loses a race or is not allowed."""

    def __init__(self, job_id: str, current: str, requested: str, expected: str | None = None):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        self.expected = expected
        detail = f"expected {expected}, " if expected else ""
        super().__init__(
            ErrorKind.CONFLICT,
            f"Job {job_id} cannot move to {requested} ({detail}status is {current})",
        )


class JobExpiredError(TerminalError):
    """The job, or the artifact it points at, is past its retention window."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(ErrorKind.EXPIRED, f"Job {job_id} has expired")


class ResultNotReadyError(TerminalError):
    """The job has not produced a result yet."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(ErrorKind.NOT_READY, f"Job {job_id} is still {status}")


class JobFailedError(TerminalError):
    """The job ended in failure; carries the job's own error kind and message."""

    def __init__(self, job_id: str, failure_kind: ErrorKind, message: str):
        self.job_id = job_id
        self.failure_kind = failure_kind
        super().__init__(failure_kind, message)


class ArtifactNotFoundError(TerminalError):
    """No artifact is stored under the reference."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(ErrorKind.NOT_FOUND, f"Artifact not found: {ref[:12]}")


class ArtifactExpiredError(TerminalError):
    """The artifact exists but its expiry has passed."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(ErrorKind.EXPIRED, f"Artifact expired: {ref[:12]}")
