"""
Error taxonomy for the Linear sync engine.

Token / workspace errors
    AuthExpired, NoActiveWorkspace, OAuthError, InvalidStateTransition
Tracker transport errors (classified from Linear responses)
    Unauthorized, NotFound, RateLimited, Unavailable, Invalid
Orchestrator errors
    SyncFailed, LocalEntityNotFound
"""

from __future__ import annotations

from typing import Optional


class SyncEngineError(Exception):
    """Base class for every error raised by the engine."""


# ── Workspace / token lifecycle ──────────────────────────────────────────


class AuthExpired(SyncEngineError):
    """No usable access token and refresh is impossible; re-authorize."""


class NoActiveWorkspace(SyncEngineError):
    """No connected workspace to sync against."""


class OAuthError(SyncEngineError):
    """The provider's token endpoint rejected a grant."""


class InvalidStateTransition(SyncEngineError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal credential transition {current} → {target}")
        self.current = current
        self.target = target


# ── Tracker transport ────────────────────────────────────────────────────


class TrackerError(SyncEngineError):
    """A classified failure from the Linear API."""

    retryable = False

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def reason(self) -> str:
        return f"{type(self).__name__}: {self.message}"


class Unauthorized(TrackerError):
    """401/403 — refresh the token once and retry."""


class NotFound(TrackerError):
    """The entity no longer exists in Linear."""


class RateLimited(TrackerError):
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class Unavailable(TrackerError):
    """5xx or network failure. ``ambiguous`` when a write may have landed."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        ambiguous: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.ambiguous = ambiguous

    @property
    def reason(self) -> str:
        if self.ambiguous:
            return f"ambiguous: {self.message}"
        return super().reason


class Invalid(TrackerError):
    """Permanent rejection of this request."""


# ── Orchestrator ─────────────────────────────────────────────────────────


class LocalEntityNotFound(SyncEngineError):
    def __init__(self, kind: str, local_id: str):
        super().__init__(f"Local {kind} {local_id!r} not found")
        self.kind = kind
        self.local_id = local_id


class SyncFailed(SyncEngineError):
    """Terminal failure of one sync attempt; the prior mapping is kept."""

    def __init__(self, reason: str, *, last_error: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.last_error = last_error if last_error is not None else reason
