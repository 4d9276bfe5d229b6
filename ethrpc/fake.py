"""An in-memory transport for exercising code that talks JSON-RPC."""

from __future__ import annotations

import json
import logging
from collections import deque
from typing import Any, Awaitable, Iterable

from .errors import UnreachableError
from .transport import Transport, build_request

log = logging.getLogger(__name__)


async def _ready(value: Any, error: Exception | None) -> Any:
    if error is not None:
        raise error
    return value


class TestTransport(Transport):
    """Record every call and answer from a queue of prepared responses."""

    __test__ = False

    def __init__(self) -> None:
        self.requests: list[tuple[str, list[Any]]] = []
        self._responses: deque[Any] = deque()
        self._asserted = 0

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        request = build_request(1, method, list(params))
        self.requests.append((method, list(params)))
        return len(self.requests), request

    def send(self, request_id: int, call: dict[str, Any]) -> Awaitable[Any]:
        """Take the next queued response; with none queued, raise ``UnreachableError``."""
        if self._responses:
            return _ready(self._responses.popleft(), None)
        log.warning("Unexpected request (id: %r): %r", request_id, call)
        return _ready(None, UnreachableError())

    def set_response(self, value: Any) -> None:
        """Replace the queued responses with a single one."""
        self._responses = deque([value])

    def add_response(self, value: Any) -> None:
        """Queue one more response."""
        self._responses.append(value)

    def assert_request(self, method: str, params: Iterable[str]) -> None:
        """Check the next unchecked request; params are given as JSON text."""
        idx = self._asserted
        self._asserted += 1
        if idx >= len(self.requests):
            raise AssertionError("Expected result.")
        actual_method, actual_params = self.requests[idx]
        if actual_method != method:
            raise AssertionError(f"method {actual_method!r} != {method!r}")
        encoded = [json.dumps(p, separators=(",", ":")) for p in actual_params]
        expected = list(params)
        if encoded != expected:
            raise AssertionError(f"params {encoded!r} != {expected!r}")

    def assert_no_more_requests(self) -> None:
        """Check that every recorded request has been asserted."""
        if self._asserted != len(self.requests):
            raise AssertionError(f"Expected no more requests, got: {self.requests[self._asserted:]!r}")