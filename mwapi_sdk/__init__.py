from .client import LoginResult, MediaWikiClient, MediaWikiClientConfig
from .codes import ErrorKind, classify_error_code
from .deadline import Deadline
from .exceptions import (
    ApiError,
    AssertionRecoveryFailed,
    AssertionReplayExhausted,
    InvalidEndpoint,
    LoginFailed,
    MediaWikiError,
    MissingToken,
    NoStoredCredentials,
    RequestCancelled,
    TokenRetryExhausted,
    TransportFailure,
    UnsupportedParameterKind,
)
from .params import Attachment, normalize_params
from .response import ApiErrorDetail, Envelope, Response
from .tokens import TokenKind

__all__ = [
    "MediaWikiClient",
    "MediaWikiClientConfig",
    "LoginResult",
    "Deadline",
    "TokenKind",
    "Attachment",
    "normalize_params",
    "Response",
    "Envelope",
    "ApiErrorDetail",
    "ErrorKind",
    "classify_error_code",
    "ApiError",
    "AssertionRecoveryFailed",
    "AssertionReplayExhausted",
    "InvalidEndpoint",
    "LoginFailed",
    "MediaWikiError",
    "MissingToken",
    "NoStoredCredentials",
    "RequestCancelled",
    "TokenRetryExhausted",
    "TransportFailure",
    "UnsupportedParameterKind",
]
