from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .codes import ErrorKind, classify_error_code

if TYPE_CHECKING:
    from .response import ApiErrorDetail, Response


class MediaWikiError(Exception):
    """Base SDK exception."""


class InvalidEndpoint(MediaWikiError, ValueError):
    """Raised when the client endpoint is not a full ``.../api.php`` URL."""


class UnsupportedParameterKind(MediaWikiError, TypeError):
    """Raised for parameter sets or values the normalizer cannot encode."""


class TransportFailure(MediaWikiError):
    """Network-level failure; never retried by the client itself."""


class RequestCancelled(TransportFailure):
    """The caller cancelled the call or its deadline expired."""


class MissingToken(MediaWikiError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"missing {kind} token in token response")
        self.kind = kind


class ApiError(MediaWikiError):
    """Raised for error envelopes returned by the API."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: int | None = None,
        errors: list[ApiErrorDetail] | None = None,
        response: Response | None = None,
    ) -> None:
        super().__init__(f"{code}: {message}" if code and message else code or message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.errors = list(errors or [])
        self.response = response

    @property
    def is_token_error(self) -> bool:
        return classify_error_code(self.code) is ErrorKind.TOKEN

    @property
    def is_assertion_failure(self) -> bool:
        return classify_error_code(self.code) is ErrorKind.ASSERTION


class TokenRetryExhausted(MediaWikiError):
    def __init__(self, kind: str, attempts: int, last_error: Exception | None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"{kind} token retry exhausted after {attempts} attempts{detail}")
        self.kind = kind
        self.attempts = attempts
        self.last_error = last_error


class LoginFailed(MediaWikiError):
    def __init__(self, result: str, reason: str = "", *, body: Any | None = None) -> None:
        message = f"login failed: {result or 'unknown result'}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.result = result
        self.reason = reason
        self.body = body


class NoStoredCredentials(MediaWikiError):
    """Relogin was requested before any successful login."""


class AssertionReplayExhausted(MediaWikiError):
    def __init__(self, replays: int, last_error: ApiError) -> None:
        super().__init__(f"identity assertion still failing after {replays} relogin(s): {last_error}")
        self.replays = replays
        self.last_error = last_error


class AssertionRecoveryFailed(MediaWikiError):
    """Relogin failed while recovering from an identity assertion failure."""

    def __init__(self, assertion_error: ApiError, relogin_error: Exception) -> None:
        super().__init__(f"{assertion_error}; relogin failed: {relogin_error}")
        self.assertion_error = assertion_error
        self.relogin_error = relogin_error
