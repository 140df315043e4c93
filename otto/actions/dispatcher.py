"""
External-action dispatch over HTTP.

Sends a described action (method, endpoint, body) to the configured
service with auth injected from configuration, and normalizes every
possible result into an ``ActionResult``:

* 2xx                -> succeeded, parsed body, status code
* non-2xx            -> server error text or reason phrase, status code
* timeout            -> "Request timeout", 408 (covers the whole exchange)
* no response        -> transport error text, no status code
* shape mismatch     -> validation failure, status code
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional
from urllib.parse import urljoin

import requests

from otto.config import ActionConfig, settings
from otto.schemas.turn_schema import ActionResult, ErrorKind

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timeout"
TIMEOUT_STATUS = 408
SHAPE_MISMATCH_MESSAGE = "Response validation failed"
INTERNAL_ERROR_MESSAGE = "Action dispatch failed unexpectedly"

_JSON_TYPES = {
    "object": dict,
    "array": list,
    "string": str,
    "boolean": bool,
}


@dataclass(frozen=True)
class AuthConfig:
    """How requests authenticate; supplied by configuration, never per request."""

    auth_type: str = "none"
    token: str = ""

    @classmethod
    def from_action_config(cls, config: ActionConfig) -> "AuthConfig":
        return cls(auth_type=config.auth_type, token=config.auth_token)

    def headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        if self.auth_type == "bearer":
            return {"Authorization": f"Bearer {self.token}"}
        if self.auth_type == "api-key":
            return {"X-API-Key": self.token}
        return {}


def matches_shape(data: Any, shape: Optional[dict[str, Any]]) -> bool:
    """Check a parsed body against a ``{"type": ...}`` shape description."""
    if not shape or "type" not in shape:
        return True
    expected = shape["type"]
    if expected == "number":
        return isinstance(data, (int, float)) and not isinstance(data, bool)
    if expected == "null":
        return data is None
    python_type = _JSON_TYPES.get(expected)
    return python_type is not None and isinstance(data, python_type)


def extract_error_message(data: Any, fallback: str) -> str:
    """Normalize error payloads from different services."""
    if isinstance(data, str) and data:
        return data
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            if isinstance(data.get(key), str):
                return data[key]
    return fallback


def _parse_body(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class DeadlineExceeded(requests.exceptions.Timeout):
    """The whole request, body included, outlived its deadline."""


class _Exchange:
    """
    One streamed request run on a worker thread.

    ``requests`` only bounds each socket read, so a server that trickles
    bytes never times out on its own. The caller waits for the worker
    with the real deadline; on expiry it shuts the socket down, which
    wakes a blocked read, and the worker closes the response.
    """

    def __init__(self, send: Callable[[], requests.Response]) -> None:
        self._send = send
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._response: Optional[requests.Response] = None
        self._error: Optional[Exception] = None
        self._cancelled = False

    def _run(self) -> None:
        response = None
        try:
            response = self._send()
            with self._lock:
                self._response = response
                cancelled = self._cancelled
            if not cancelled:
                response.content  # read the streamed body
        except Exception as exc:
            self._error = exc
        finally:
            self._done.set()
            with self._lock:
                cancelled = self._cancelled
            if cancelled and response is not None:
                response.close()

    def _cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            response = self._response
        if response is None:
            return
        connection = getattr(response.raw, "connection", None)
        sock = getattr(connection, "sock", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def result(self, timeout_sec: float) -> requests.Response:
        """
        Raises:
            DeadlineExceeded: If headers and body are not in by the deadline.
        """
        threading.Thread(target=self._run, name="action-dispatch", daemon=True).start()
        if not self._done.wait(max(0.0, timeout_sec)):
            self._cancel()
            raise DeadlineExceeded("Request did not complete before its deadline")
        if self._error is not None:
            raise self._error
        return self._response


class ActionDispatcher:
    """Thin, non-retrying HTTP client for external actions."""

    def __init__(
        self,
        config: Optional[ActionConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or settings.action
        self._session = session or requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    @property
    def config(self) -> ActionConfig:
        return self._config

    def update_config(self, **changes: Any) -> None:
        """Replace selected configuration fields, e.g. a rotated token."""
        self._config = replace(self._config, **changes)
        logger.info("Action dispatcher configuration updated: %s", sorted(changes))

    def build_url(self, endpoint: str) -> str:
        if not self._config.base_url:
            return endpoint
        return urljoin(self._config.base_url.rstrip("/") + "/", endpoint.lstrip("/"))

    def dispatch(
        self,
        endpoint: str,
        method: str = "POST",
        body: Any = None,
        auth: Optional[AuthConfig] = None,
        timeout_ms: Optional[int] = None,
        params: Optional[dict[str, Any]] = None,
        expected_shape: Optional[dict[str, Any]] = None,
    ) -> ActionResult:
        """Send one request and normalize the result. Never raises."""
        start = time.monotonic()
        method = method.upper()
        if timeout_ms is None:
            timeout_ms = self._config.timeout_ms
        auth = auth or AuthConfig.from_action_config(self._config)
        url = self.build_url(endpoint)

        exchange = _Exchange(lambda: self._session.request(
            method,
            url,
            headers=auth.headers(),
            params=params if method == "GET" else None,
            json=body if method != "GET" else None,
            timeout=max(timeout_ms, 1) / 1000,
            stream=True,
        ))
        try:
            response = exchange.result(timeout_ms / 1000 - (time.monotonic() - start))
        except requests.exceptions.Timeout:
            logger.warning("%s %s timed out after %d ms", method, url, timeout_ms)
            return ActionResult(
                succeeded=False,
                error_message=TIMEOUT_MESSAGE,
                status_code=TIMEOUT_STATUS,
                error_kind=ErrorKind.TIMEOUT,
                elapsed_ms=_elapsed_ms(start),
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            return ActionResult(
                succeeded=False,
                error_message=str(exc) or "Network error",
                error_kind=ErrorKind.TRANSPORT,
                elapsed_ms=_elapsed_ms(start),
            )
        except Exception:
            logger.exception("Unexpected failure sending %s %s", method, url)
            return ActionResult(
                succeeded=False,
                error_message=INTERNAL_ERROR_MESSAGE,
                error_kind=ErrorKind.INTERNAL,
                elapsed_ms=_elapsed_ms(start),
            )

        try:
            return self._normalize(method, url, response, expected_shape, start)
        except Exception:
            logger.exception("Unexpected failure handling response from %s", url)
            return ActionResult(
                succeeded=False,
                error_message=INTERNAL_ERROR_MESSAGE,
                status_code=response.status_code,
                error_kind=ErrorKind.INTERNAL,
                elapsed_ms=_elapsed_ms(start),
            )

    def _normalize(
        self,
        method: str,
        url: str,
        response: requests.Response,
        expected_shape: Optional[dict[str, Any]],
        start: float,
    ) -> ActionResult:
        data = _parse_body(response)
        status = response.status_code
        logger.info("%s %s -> %d", method, url, status)

        if not 200 <= status < 300:
            return ActionResult(
                succeeded=False,
                error_message=extract_error_message(data, response.reason or f"HTTP {status}"),
                status_code=status,
                error_kind=ErrorKind.HTTP,
                elapsed_ms=_elapsed_ms(start),
            )

        if not matches_shape(data, expected_shape):
            logger.warning("Response from %s does not match shape %s", url, expected_shape)
            return ActionResult(
                succeeded=False,
                error_message=SHAPE_MISMATCH_MESSAGE,
                status_code=status,
                error_kind=ErrorKind.VALIDATION,
                elapsed_ms=_elapsed_ms(start),
            )

        return ActionResult(
            succeeded=True,
            data=data,
            status_code=status,
            elapsed_ms=_elapsed_ms(start),
        )
