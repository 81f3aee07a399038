from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import httpx

from .deadline import Deadline, request_timeout
from .exceptions import (
    ApiError,
    AssertionRecoveryFailed,
    AssertionReplayExhausted,
    LoginFailed,
    MediaWikiError,
    NoStoredCredentials,
    RequestCancelled,
    TokenRetryExhausted,
    TransportFailure,
)
from .params import NormalizedParams, normalize_params
from .codes import ErrorKind, classify_error_code
from .response import Response, parse_response
from .tokens import ClientState, TokenCache, TokenKind, extract_token, token_kind_name
from .transport import build_request, validate_endpoint

logger = logging.getLogger(__name__)

ASSERT_USER_FIELD = "assertuser"
IO_WORKERS = 8
LOGIN_TOKEN_RESULTS = frozenset({"needtoken", "wrongtoken"})


@dataclass(frozen=True)
class MediaWikiClientConfig:
    endpoint: str
    user_agent: str = "mwapi-sdk/0.1"
    timeout_seconds: float = 30.0
    throw_on_api_error: bool = False
    keep_login: bool = True
    relogin_retry: int = 3
    token_retry: int = 3
    max_body_bytes: int = 32 << 20


@dataclass(frozen=True)
class LoginResult:
    result: str
    user_id: int | None = None
    username: str = ""
    reason: str = ""

    @classmethod
    def from_response(cls, response: Response) -> LoginResult:
        body = response.data if isinstance(response.data, dict) else {}
        login = body.get("login")
        if not isinstance(login, dict):
            return cls(result="")
        user_id = login.get("lguserid")
        reason = login.get("reason")
        if isinstance(reason, dict):
            reason = reason.get("text") or reason.get("code")
        return cls(
            result=str(login.get("result") or ""),
            user_id=user_id if isinstance(user_id, int) and not isinstance(user_id, bool) else None,
            username=str(login.get("lgusername") or ""),
            reason=str(reason or ""),
        )

    @property
    def succeeded(self) -> bool:
        return self.result.lower() == "success"


@dataclass(frozen=True)
class _SendOptions:
    skip_assert: bool = False
    skip_relogin: bool = False


class MediaWikiClient:
    def __init__(self, config: MediaWikiClientConfig, *, http_client: httpx.Client | None = None) -> None:
        if config.relogin_retry < 0:
            raise ValueError("relogin_retry must be >= 0")
        if config.token_retry < 1:
            raise ValueError("token_retry must be >= 1")
        self._config = config
        self._endpoint = validate_endpoint(config.endpoint)
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=config.timeout_seconds, follow_redirects=True)
        self._state = ClientState()
        self._tokens = TokenCache(self._state, self._fetch_token)
        self._io_pool = ThreadPoolExecutor(max_workers=IO_WORKERS, thread_name_prefix="mwapi-sdk-io")

    def close(self) -> None:
        self._io_pool.shutdown(wait=False)
        if self._owns_http_client:
            self._http.close()

    def __enter__(self) -> "MediaWikiClient":
        return self

    def __exit__(self, exc_type: Any, exc: Any, traceback: Any) -> None:
        self.close()

    @property
    def config(self) -> MediaWikiClientConfig:
        return self._config

    @property
    def endpoint(self) -> httpx.URL:
        return self._endpoint

    @property
    def cookies(self) -> httpx.Cookies:
        return self._http.cookies

    @property
    def logged_in_user(self) -> str:
        with self._state.lock:
            return self._state.logged_in_user

    @property
    def is_logged_in(self) -> bool:
        return bool(self.logged_in_user)

    def get(self, params: Any = None, *, deadline: Deadline | None = None) -> Response:
        return self._request("GET", normalize_params(params), deadline=deadline)

    def post(self, params: Any = None, *, deadline: Deadline | None = None) -> Response:
        return self._request("POST", normalize_params(params), deadline=deadline)

    def iter_query(self, params: Any = None, *, deadline: Deadline | None = None) -> Iterator[Response]:
        """Yield every page of a read query, following ``continue`` markers."""
        base = normalize_params(params)
        continuation: dict[str, str] = {}
        while True:
            current = base
            for key, value in continuation.items():
                current = current.with_field(key, value)
            response = self._request("GET", current, deadline=deadline)
            yield response
            if not response.continuation:
                return
            continuation = response.continuation

    # Tokens

    def get_token(self, kind: TokenKind | str = TokenKind.CSRF, *, deadline: Deadline | None = None) -> str:
        return self._tokens.get(kind, deadline)

    def invalidate_token(self, kind: TokenKind | str) -> None:
        self._tokens.invalidate(kind)

    def invalidate_all_tokens(self) -> None:
        self._tokens.invalidate_all()

    def write_with_token(
        self,
        kind: TokenKind | str,
        params: Any,
        *,
        token_field: str = "token",
        retry: int | None = None,
        bypass_cache: bool = False,
        deadline: Deadline | None = None,
    ) -> Response:
        """POST ``params`` with a ``kind`` token, refreshing it on token errors.

        The first attempt uses the cached token (or a fresh one when
        ``bypass_cache`` is set); later attempts always refetch. Raises
        ``TokenRetryExhausted`` once ``retry`` attempts saw token errors.
        """
        return self._write_with_token(
            kind,
            normalize_params(params),
            token_field=token_field,
            retry=retry,
            bypass_cache=bypass_cache,
            deadline=deadline,
        )

    # Session

    def login(self, username: str, password: str, *, deadline: Deadline | None = None) -> LoginResult:
        params = normalize_params({"action": "login", "lgname": username, "lgpassword": password})
        try:
            response = self._write_with_token(
                TokenKind.LOGIN,
                params,
                token_field="lgtoken",
                bypass_cache=True,
                deadline=deadline,
                token_error_of=_login_token_error,
                options=_SendOptions(skip_assert=True, skip_relogin=True),
            )
        except ApiError as exc:
            # Strict mode raises envelope errors before the login result is read.
            if exc.is_token_error or exc.is_assertion_failure:
                raise
            body = exc.response.data if exc.response is not None else None
            raise LoginFailed(exc.code, exc.message, body=body) from exc

        result = LoginResult.from_response(response)
        if not result.succeeded:
            api_error = response.api_error()
            if not result.result and api_error is not None:
                raise LoginFailed(api_error.code, api_error.message, body=response.data)
            raise LoginFailed(result.result, result.reason, body=response.data)

        with self._state.lock:
            self._state.username = username
            self._state.password = password
            self._state.logged_in_user = result.username or username
        self._tokens.invalidate_all()
        logger.info("Logged in as %s", result.username or username)
        return result

    def relogin(self, *, deadline: Deadline | None = None) -> LoginResult:
        with self._state.lock:
            username = self._state.username
            password = self._state.password
        if not username or not password:
            raise NoStoredCredentials("relogin requested but no stored credentials")
        return self.login(username, password, deadline=deadline)

    def logout(self, *, deadline: Deadline | None = None) -> Response:
        try:
            return self._write_with_token(
                TokenKind.CSRF,
                normalize_params({"action": "logout"}),
                deadline=deadline,
                options=_SendOptions(skip_relogin=True),
            )
        finally:
            with self._state.lock:
                self._state.logged_in_user = ""
                self._state.username = ""
                self._state.password = ""
            self._tokens.invalidate_all()
            logger.info("Logged out")

    # Internals

    def _write_with_token(
        self,
        kind: TokenKind | str,
        params: NormalizedParams,
        *,
        token_field: str = "token",
        retry: int | None = None,
        bypass_cache: bool = False,
        deadline: Deadline | None = None,
        token_error_of: Callable[[Response], str] | None = None,
        options: _SendOptions = _SendOptions(),
    ) -> Response:
        name = token_kind_name(kind)
        attempts = retry if retry is not None and retry > 0 else self._config.token_retry
        token_error_of = token_error_of or _envelope_token_error

        last_error: ApiError | None = None
        for attempt_idx in range(attempts):
            if attempt_idx > 0 or bypass_cache:
                self._tokens.invalidate(name)
            token = self._tokens.get(name, deadline)

            try:
                response = self._request("POST", params.with_field(token_field, token), deadline=deadline, options=options)
            except ApiError as exc:
                if not exc.is_token_error:
                    raise
                last_error = exc
            else:
                code = token_error_of(response)
                if not code:
                    return response
                api_error = response.api_error()
                if api_error is not None and api_error.is_token_error:
                    last_error = api_error
                else:
                    last_error = ApiError(code, "token error", status_code=response.status_code, response=response)

            logger.warning("Stale %s token (%s), attempt %d of %d", name, last_error.code, attempt_idx + 1, attempts)

        raise TokenRetryExhausted(name, attempts, last_error) from last_error

    def _request(
        self,
        method: str,
        params: NormalizedParams,
        *,
        deadline: Deadline | None = None,
        options: _SendOptions = _SendOptions(),
    ) -> Response:
        caller_asserted = bool(params.get(ASSERT_USER_FIELD))
        skip_assert = options.skip_assert or _is_login_request(params)
        max_relogin = 0 if options.skip_relogin else self._config.relogin_retry

        for attempt_idx in range(max_relogin + 1):
            outgoing = params
            if self._config.keep_login and not skip_assert and not caller_asserted:
                user = self.logged_in_user
                if user:
                    outgoing = params.with_field(ASSERT_USER_FIELD, user)

            try:
                response = self._send(method, outgoing, deadline)
            except ApiError as exc:
                if not exc.is_assertion_failure:
                    raise
                assertion_error = exc
            else:
                if response.error_kind() is not ErrorKind.ASSERTION:
                    return response
                assertion_error = response.api_error() or ApiError(
                    response.first_error_code(), "assertuser failed", status_code=response.status_code, response=response
                )

            if attempt_idx >= max_relogin:
                raise AssertionReplayExhausted(attempt_idx, assertion_error) from assertion_error

            logger.warning(
                "Identity assertion failed (%s), relogin %d of %d", assertion_error.code, attempt_idx + 1, max_relogin
            )
            try:
                self.relogin(deadline=deadline)
            except MediaWikiError as exc:
                raise AssertionRecoveryFailed(assertion_error, exc) from exc

        raise RuntimeError("unreachable relogin loop state")

    def _send(self, method: str, params: NormalizedParams, deadline: Deadline | None) -> Response:
        timeout = request_timeout(self._config.timeout_seconds, deadline)
        request = build_request(
            self._http,
            method,
            self._endpoint,
            params,
            user_agent=self._config.user_agent,
            timeout=timeout,
        )
        logger.debug("%s action=%s", method, params.get("action"))

        if deadline is None:
            status_code, headers, raw = self._exchange(request, None)
        else:
            # The exchange runs on a worker so cancel() returns control at once.
            # An abandoned worker stops at its next body chunk and closes the stream.
            future = self._io_pool.submit(self._exchange, request, deadline)
            status_code, headers, raw = deadline.result(future)

        response = parse_response(status_code, headers, raw)
        if self._config.throw_on_api_error:
            api_error = response.api_error()
            if api_error is not None:
                raise api_error
        return response

    def _exchange(self, request: httpx.Request, deadline: Deadline | None) -> tuple[int, httpx.Headers, bytes]:
        try:
            http_response = self._http.send(request, stream=True)
        except httpx.TimeoutException as exc:
            if deadline is not None and deadline.cancelled:
                raise RequestCancelled("request deadline exceeded") from exc
            raise TransportFailure(f"request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"request failed: {exc}") from exc

        try:
            raw = self._read_body(http_response, deadline)
        finally:
            http_response.close()
        return http_response.status_code, http_response.headers, raw

    def _read_body(self, http_response: httpx.Response, deadline: Deadline | None) -> bytes:
        chunks: list[bytes] = []
        size = 0
        try:
            for chunk in http_response.iter_bytes():
                if deadline is not None:
                    deadline.check()
                size += len(chunk)
                if size > self._config.max_body_bytes:
                    raise TransportFailure(f"response body exceeds {self._config.max_body_bytes} bytes")
                chunks.append(chunk)
        except httpx.TimeoutException as exc:
            if deadline is not None and deadline.cancelled:
                raise RequestCancelled("request deadline exceeded") from exc
            raise TransportFailure(f"reading response timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"reading response failed: {exc}") from exc
        return b"".join(chunks)

    def _fetch_token(self, kind: str, deadline: Deadline | None) -> str:
        response = self._request(
            "GET",
            normalize_params({"action": "query", "meta": "tokens", "type": kind}),
            deadline=deadline,
        )
        return extract_token(response.data, kind)


def _is_login_request(params: NormalizedParams) -> bool:
    action = params.get("action").lower()
    if action == "login":
        return True
    meta = params.get("meta").lower().split("|")
    return action == "query" and "tokens" in meta and "login" in params.get("type").lower()


def _envelope_token_error(response: Response) -> str:
    code = response.first_error_code()
    return code if classify_error_code(code) is ErrorKind.TOKEN else ""


def _login_token_error(response: Response) -> str:
    code = _envelope_token_error(response)
    if code:
        return code
    result = LoginResult.from_response(response).result
    return result if result.lower() in LOGIN_TOKEN_RESULTS else ""
