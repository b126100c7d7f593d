"""
Exception types raised by the flagboard core.
"""

from typing import Optional


class FlagboardError(Exception):
    """Base class for every error raised by the scoring core."""

    #: HTTP status used by the web layer when this error reaches a handler
    status = 500

    #: Whether the caller may retry the same action unchanged
    retryable = False


class NotFound(FlagboardError):
    """A referenced challenge, event or user does not exist."""

    status = 404

    def __init__(
        self,
        kind: str,
        identifier: str,
    ) -> None:
        super().__init__(f"{kind} '{identifier}' not found")
        self.kind = kind
        self.identifier = identifier


class InactiveChallenge(FlagboardError):
    """The challenge exists but is disabled for answering."""

    status = 403

    def __init__(self, challenge_id: str) -> None:
        super().__init__(f"Challenge '{challenge_id}' is not active")
        self.challenge_id = challenge_id


class InvalidChallenge(FlagboardError):
    """Challenge data violates the catalog rules."""

    status = 400


class InvalidEvent(FlagboardError):
    """Event data violates the catalog rules."""

    status = 400


class InvalidRequest(FlagboardError):
    """Malformed request payload."""

    status = 400


class NotRegistered(FlagboardError):
    """The user is not a participant of the event they submitted to."""

    status = 403

    def __init__(
        self,
        user_id: str,
        event_id: str,
    ) -> None:
        super().__init__(f"User '{user_id}' is not registered for event '{event_id}'")
        self.user_id = user_id
        self.event_id = event_id


class AlreadyCredited(FlagboardError):
    """Credit for this challenge already exists in the requested scope."""

    status = 409


class ClaimNotAllowed(FlagboardError):
    """An event claim was requested for a challenge that cannot be claimed."""

    status = 409


class StorageUnavailable(FlagboardError):
    """The document store could not complete a call."""

    status = 503
    retryable = True

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause


class SubmissionFailed(StorageUnavailable):
    """A write made while recording a submission failed."""
