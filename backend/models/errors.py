"""
Error taxonomy for interview sessions.

Only InvalidPayload and SubmissionFailed ever reach the candidate. Capture and
playback failures are absorbed where they happen and only show up in the
session event log.
"""
from typing import Optional

from models.schemas import ErrorKind, SessionState


class InterviewError(Exception):
    """Base class for all session errors."""

    kind: Optional[ErrorKind] = None
    recoverable: bool = True

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidPayloadError(InterviewError):
    """Setup payload is malformed or has no questions. Caller must restart setup."""

    kind = ErrorKind.INVALID_PAYLOAD
    recoverable = False


class SubmissionFailedError(InterviewError):
    """Grading call failed or returned a malformed payload."""

    kind = ErrorKind.SUBMISSION_FAILED


class CaptureUnavailableError(InterviewError):
    """Microphone permission denied or device busy."""

    kind = ErrorKind.CAPTURE_UNAVAILABLE


class PlaybackFailureError(InterviewError):
    """Narration could not be synthesized or played."""

    kind = ErrorKind.PLAYBACK_FAILURE


class ApiError(InterviewError):
    """Question generation / grading server returned an error or unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LedgerError(InterviewError):
    """Answer written for a question that is not the current one."""


class IllegalTransitionError(InterviewError):
    """State machine asked to move along an edge it does not have."""

    def __init__(self, source: SessionState, target: SessionState):
        super().__init__(f"Illegal transition {source.value} -> {target.value}")
        self.source = source
        self.target = target


class ActionRejectedError(InterviewError):
    """User action is not accepted in the current state."""

    def __init__(self, action: str, state: SessionState, reason: str = ""):
        message = f"Action '{action}' not allowed in state '{state.value}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.action = action
        self.state = state


class SessionClosedError(RuntimeError):
    """Action submitted to, or still pending on, a session that has been closed."""
