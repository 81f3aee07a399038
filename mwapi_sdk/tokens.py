"""Session token cache with per-kind fetch coalescing.

Tokens are session bound: the cache is cleared whenever the logged-in
identity changes. Concurrent ``get`` calls for the same uncached kind share
one network fetch.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .deadline import Deadline, wait_for
from .exceptions import MissingToken

logger = logging.getLogger(__name__)


class TokenKind(str, Enum):
    CSRF = "csrf"
    LOGIN = "login"
    WATCH = "watch"
    PATROL = "patrol"
    ROLLBACK = "rollback"
    USERRIGHTS = "userrights"
    CREATEACCOUNT = "createaccount"


def token_kind_name(kind: TokenKind | str) -> str:
    name = kind.value if isinstance(kind, TokenKind) else str(kind)
    if not name.strip():
        raise ValueError("token kind must be a non-empty string")
    return name.strip().lower()


def extract_token(body: Any, kind: str) -> str:
    """Read ``query.tokens.<kind>token`` from a token response body."""
    query = body.get("query") if isinstance(body, dict) else None
    tokens = query.get("tokens") if isinstance(query, dict) else None
    value = tokens.get(f"{kind}token") if isinstance(tokens, dict) else None
    if not isinstance(value, str) or not value:
        raise MissingToken(kind)
    return value


class _InFlightFetch:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: str | None = None
        self.error: BaseException | None = None


@dataclass
class ClientState:
    """Mutable per-client state; every access happens under ``lock``."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    tokens: dict[str, str] = field(default_factory=dict, repr=False)
    in_flight: dict[str, _InFlightFetch] = field(default_factory=dict)
    epoch: int = 0
    kind_epochs: dict[str, int] = field(default_factory=dict)
    logged_in_user: str = ""
    username: str = ""
    password: str = field(default="", repr=False)


TokenFetcher = Callable[[str, "Deadline | None"], str]


class TokenCache:
    def __init__(self, state: ClientState, fetch: TokenFetcher) -> None:
        self._state = state
        self._fetch = fetch

    def peek(self, kind: TokenKind | str) -> str | None:
        name = token_kind_name(kind)
        with self._state.lock:
            return self._state.tokens.get(name)

    def get(self, kind: TokenKind | str, deadline: Deadline | None = None) -> str:
        name = token_kind_name(kind)
        state = self._state
        with state.lock:
            cached = state.tokens.get(name)
            if cached:
                return cached
            flight = state.in_flight.get(name)
            leader = flight is None
            if flight is None:
                flight = _InFlightFetch()
                state.in_flight[name] = flight
            epochs = (state.epoch, state.kind_epochs.get(name, 0))

        if not leader:
            wait_for(flight.done, deadline)
            if flight.error is not None:
                raise flight.error
            assert flight.value is not None
            return flight.value

        try:
            value = self._fetch(name, deadline)
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            flight.value = value
            with state.lock:
                # An invalidation during the fetch means this value may belong to an old session.
                if epochs == (state.epoch, state.kind_epochs.get(name, 0)):
                    state.tokens[name] = value
            logger.debug("Fetched %s token", name)
            return value
        finally:
            with state.lock:
                if state.in_flight.get(name) is flight:
                    del state.in_flight[name]
            flight.done.set()

    def invalidate(self, kind: TokenKind | str) -> None:
        name = token_kind_name(kind)
        with self._state.lock:
            self._state.tokens.pop(name, None)
            self._state.in_flight.pop(name, None)
            self._state.kind_epochs[name] = self._state.kind_epochs.get(name, 0) + 1

    def invalidate_all(self) -> None:
        with self._state.lock:
            self._state.tokens.clear()
            self._state.in_flight.clear()
            self._state.epoch += 1
