"""Exceptions raised while cleaning up a policy layer."""

from typing import Optional


class RuleCleanupError(Exception):
    """Base class for every failure the cleanup run can report."""

    kind = "error"


class ConfigurationError(RuleCleanupError):
    """Run parameters are missing or inconsistent."""

    kind = "configuration"


class AuthenticationError(RuleCleanupError):
    """The management server rejected the credentials."""

    kind = "authentication"


class ConnectivityError(RuleCleanupError):
    """Transport failure: timeout, TLS negotiation, DNS or refused connection."""

    kind = "connectivity"


class ApiError(RuleCleanupError):
    """The management server answered a command with an error status."""

    kind = "api"

    def __init__(self, command: str, status: int, code: Optional[str] = None,
                 message: Optional[str] = None):
        self.command = command
        self.status = status
        self.code = code
        self.message = message
        detail = message or "no message"
        if code:
            detail = f"{code}: {detail}"
        super().__init__(f"'{command}' failed with HTTP {status} ({detail})")


class SessionStateError(RuleCleanupError):
    """A command was issued while the session was not open."""

    kind = "session"


class FetchError(RuleCleanupError):
    """The rule base could not be retrieved completely."""

    kind = "fetch"


class InconsistentPaginationError(FetchError):
    """The rule base changed under the fetch, so pages no longer line up."""

    kind = "pagination"


class MutationPartialFailure(RuleCleanupError):
    """One or more rules of a disable/delete batch could not be changed."""

    kind = "mutation"

    def __init__(self, action: str, failed_uids, first_error: Optional[Exception] = None):
        self.action = action
        self.failed_uids = list(failed_uids)
        self.first_error = first_error
        message = f"Failed to {action} {len(self.failed_uids)} rule(s)"
        if first_error is not None:
            message += f"; first error: {first_error}"
        super().__init__(message)


class PublishError(RuleCleanupError):
    """Publishing the session changes failed."""

    kind = "publish"


class PublishTimeoutError(RuleCleanupError):
    """The publish task did not finish within the allowed wait."""

    kind = "publish-timeout"


class DiscardError(RuleCleanupError):
    """Discarding the session changes failed; manual cleanup is required."""

    kind = "discard"


class LogoutError(RuleCleanupError):
    """Closing the session failed."""

    kind = "logout"
