"""Cached client-credentials access tokens from the identity service."""

from __future__ import annotations

import json
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable

# How early a cached token is refreshed before it expires, in seconds.
EXPIRY_BUFFER = 30.0

DEFAULT_TIMEOUT = 10.0


class TokenError(Exception):
    """Raised when an access token cannot be obtained."""


class TokenSource:
    """Fetches and caches a client_credentials access token.

    ``token()`` is safe to call from several threads. The lock is never held
    during network I/O, so callers with a valid cached token are never blocked
    by a fetch in flight.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._cached = ""
        self._expires_at = 0.0

    def token(self) -> str:
        """Return a valid bearer token, fetching a new one when needed."""
        with self._lock:
            if self._cached and self._clock() + EXPIRY_BUFFER < self._expires_at:
                return self._cached

        access_token, expires_in = self._fetch()

        with self._lock:
            self._cached = access_token
            self._expires_at = self._clock() + expires_in
        return access_token

    def invalidate(self) -> None:
        """Drop the cached token so the next call fetches a new one."""
        with self._lock:
            self._cached = ""
            self._expires_at = 0.0

    def _fetch(self) -> tuple[str, int]:
        body = urllib.parse.urlencode(
            {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }
        ).encode()
        try:
            request = urllib.request.Request(
                self.base_url + "/oauth/token",
                data=body,
                method="POST",
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except ValueError as err:
            raise TokenError(f"identity: build request: {err}") from err

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status, payload = response.status, response.read()
        except urllib.error.HTTPError as err:
            status, payload = err.code, err.read()
            err.close()
        except (urllib.error.URLError, OSError, ValueError) as err:
            raise TokenError(f"identity: token request: {err}") from err

        if status != 200:
            raise TokenError(_error_message(status, payload))

        try:
            data = json.loads(payload)
        except ValueError as err:
            raise TokenError(f"identity: decode response: {err}") from err
        if not isinstance(data, dict):
            raise TokenError("identity: decode response: expected a JSON object")

        access_token = data.get("access_token", "")
        expires_in = data.get("expires_in", 0)
        if not isinstance(access_token, str):
            raise TokenError("identity: decode response: access_token is not a string")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise TokenError("identity: decode response: expires_in is not an integer")
        if not access_token:
            raise TokenError("identity: empty access_token in response")
        if expires_in <= 0:
            raise TokenError(f"identity: invalid expires_in {expires_in} in response")
        return access_token, expires_in


def _error_message(status: int, payload: bytes) -> str:
    try:
        data: Any = json.loads(payload)
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, str) and error:
            description = data.get("error_description", "")
            return f"identity: {error}: {description}"
    return f"identity: unexpected status {status}"