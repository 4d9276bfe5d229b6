"""A transport that forwards to whichever of several transports it holds."""

from __future__ import annotations

from typing import Any, AsyncIterator, Awaitable, Iterable

from .transport import BatchTransport, DuplexTransport, Transport


class Either(BatchTransport, DuplexTransport):
    """Wrap one transport so code can use a single type for any of them.

    Batch and subscription calls raise ``TypeError`` when the wrapped
    transport does not support them.
    """

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def __repr__(self) -> str:
        return f"Either({self.transport!r})"

    def _require(self, name: str) -> Any:
        method = getattr(self.transport, name, None)
        if method is None:
            raise TypeError(f"{type(self.transport).__name__} does not support {name}")
        return method

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        return self.transport.prepare(method, params)

    def send(self, request_id: int, call: dict[str, Any]) -> Awaitable[Any]:
        return self.transport.send(request_id, call)

    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]) -> Awaitable[list[Any]]:
        return self._require("send_batch")(requests)

    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        return self._require("subscribe")(subscription_id)

    def unsubscribe(self, subscription_id: str) -> None:
        return self._require("unsubscribe")(subscription_id)