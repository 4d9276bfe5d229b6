"""JSON-RPC over a WebSocket connection."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Iterable
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .errors import Error, InvalidResponseError, TransportError
from .transport import (
    BatchTransport,
    DuplexTransport,
    build_request,
    dumps_request,
    results_from_outputs,
)

log = logging.getLogger(__name__)

_DROPPED = "Cannot send request. Internal task finished."
_NOTIFICATION_KEYS = frozenset({"jsonrpc", "method", "params"})
_OUTPUT_KEYS = frozenset({"jsonrpc", "result", "error", "id"})


@dataclass(frozen=True)
class Endpoint:
    """Where a WebSocket URL points to."""

    scheme: str
    host: str
    port: int
    resource: str

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def resolve_endpoint(url: str) -> Endpoint:
    """Check a ``ws``/``wss`` URL and split it into host, port and resource."""
    parts = urlsplit(url)
    if not parts.scheme:
        raise TransportError("failed to parse url: relative URL without a base")
    scheme = parts.scheme.lower()
    if scheme not in ("ws", "wss"):
        raise TransportError(f"Wrong scheme: {scheme}")
    host = parts.hostname
    if not host:
        raise TransportError("Wrong host name")
    try:
        port = parts.port
    except ValueError as err:
        raise TransportError(f"failed to parse url: {err}") from err
    if port is None:
        port = 80 if scheme == "ws" else 443
    path = parts.path or "/"
    resource = f"{path}?{parts.query}" if parts.query else path
    return Endpoint(scheme, host, port, resource)


class _Notifications:
    """Stream of the notification values of one subscription."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[bool, Any]] = asyncio.Queue()

    def push(self, value: Any) -> None:
        self._queue.put_nowait((True, value))

    def end(self) -> None:
        self._queue.put_nowait((False, None))

    def __aiter__(self) -> _Notifications:
        return self

    async def __anext__(self) -> Any:
        live, value = await self._queue.get()
        if not live:
            self._queue.put_nowait((False, None))
            raise StopAsyncIteration
        return value


def _is_notification(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("method"), str)
        and set(value) <= _NOTIFICATION_KEYS
    )


def _is_output(value: Any) -> bool:
    if not isinstance(value, dict) or "id" not in value or not set(value) <= _OUTPUT_KEYS:
        return False
    output_id = value["id"]
    if isinstance(output_id, bool):
        return False
    if isinstance(output_id, int):
        if output_id < 0:
            return False
    elif output_id is not None and not isinstance(output_id, str):
        return False
    return ("result" in value) != ("error" in value)


def _outputs_of(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value if all(_is_output(item) for item in value) else []
    return [value] if _is_output(value) else []


def _fail(future: asyncio.Future[Any]) -> None:
    if not future.done():
        future.set_exception(TransportError(_DROPPED))


async def _raise(error: Error) -> Any:
    raise error


async def _single(future: asyncio.Future[list[Any]]) -> Any:
    results = await future
    if not results:
        raise InvalidResponseError("Expected single, got batch.")
    first = results[0]
    if isinstance(first, Error):
        raise first
    return first


async def _batch(future: asyncio.Future[list[Any]]) -> list[Any]:
    return await future


class WebSocket(BatchTransport, DuplexTransport):
    """Send calls over a WebSocket and route answers and notifications back."""

    def __init__(self, connection: Any) -> None:
        self._connection = connection
        self._loop = asyncio.get_running_loop()
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[list[Any]]] = {}
        self._subscriptions: dict[str, _Notifications] = {}
        self._outgoing: asyncio.Queue[tuple[int, str]] = asyncio.Queue()
        self._closed = False
        self._writer = self._loop.create_task(self._write_loop())
        self._reader = self._loop.create_task(self._read_loop())

    def __repr__(self) -> str:
        return f"WebSocket(closed={self._closed})"

    @classmethod
    async def connect(cls, url: str) -> WebSocket:
        """Open a connection to ``url`` and start serving it."""
        endpoint = resolve_endpoint(url)
        log.debug("Connecting websocket client with host: %s and resource: %s", endpoint.host, endpoint.resource)
        try:
            connection = await websockets.connect(url, max_size=None)
        except InvalidURI as err:
            raise TransportError(f"failed to parse url: {err}") from err
        except InvalidHandshake as err:
            raise TransportError(f"Handshake Error: {err!r}") from err
        except OSError as err:
            raise TransportError(f"Connection Error: {err!r}") from err
        return cls(connection)

    async def __aenter__(self) -> WebSocket:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        request_id = next(self._ids)
        return request_id, build_request(request_id, method, params)

    def send(self, request_id: int, call: dict[str, Any]) -> Awaitable[Any]:
        try:
            future = self._send_request(request_id, dumps_request(call))
        except TransportError as err:
            return _raise(err)
        return _single(future)

    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]) -> Awaitable[list[Any]]:
        pairs = list(requests)
        request_id = pairs[0][0] if pairs else 0
        try:
            future = self._send_request(request_id, dumps_request([call for _, call in pairs]))
        except TransportError as err:
            return _raise(err)
        return _batch(future)

    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        self._check_open()
        stream = _Notifications()
        previous = self._subscriptions.get(subscription_id)
        if previous is not None:
            log.warning("Replacing already-registered subscription with id %r", subscription_id)
            previous.end()
        self._subscriptions[subscription_id] = stream
        return stream

    def unsubscribe(self, subscription_id: str) -> None:
        self._check_open()
        stream = self._subscriptions.pop(subscription_id, None)
        if stream is None:
            log.warning("Unsubscribing from non-existent subscription with id %r", subscription_id)
        else:
            stream.end()

    async def close(self) -> None:
        """Close the connection; calls still waiting fail with ``TransportError``."""
        if self._closed and self._reader.done() and self._writer.done():
            return
        self._closed = True
        for task in (self._reader, self._writer):
            task.cancel()
        await asyncio.gather(self._reader, self._writer, return_exceptions=True)
        self._finish()
        try:
            await self._connection.close()
        except (OSError, ConnectionClosed):
            pass

    def _check_open(self) -> None:
        if self._closed:
            raise TransportError(_DROPPED)

    def _send_request(self, request_id: int, text: str) -> asyncio.Future[list[Any]]:
        self._check_open()
        log.debug("[%s] Calling: %s", request_id, text)
        future: asyncio.Future[list[Any]] = self._loop.create_future()
        previous = self._pending.get(request_id)
        if previous is not None:
            log.warning("Replacing a pending request with id %r", request_id)
            _fail(previous)
        self._pending[request_id] = future
        self._outgoing.put_nowait((request_id, text))
        return future

    async def _write_loop(self) -> None:
        while True:
            request_id, text = await self._outgoing.get()
            try:
                await self._connection.send(text)
            except (ConnectionClosed, OSError) as err:
                log.error("WS connection error: %r", err)
                future = self._pending.pop(request_id, None)
                if future is not None:
                    _fail(future)

    async def _read_loop(self) -> None:
        try:
            async for message in self._connection:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self._handle_message(message)
        except (ConnectionClosed, OSError) as err:
            log.error("WS connection error: %r", err)
        finally:
            self._finish()

    def _handle_message(self, data: str) -> None:
        log.debug("Message received: %r", data)
        try:
            value = json.loads(data)
        except ValueError:
            value = None
        if _is_notification(value):
            self._notify(value)
            return
        outputs = _outputs_of(value)
        output_id = outputs[0]["id"] if outputs else 0
        if not isinstance(output_id, int):
            log.warning("Got unsupported response (id: %r)", output_id)
            return
        future = self._pending.pop(output_id, None)
        if future is None:
            log.warning("Got response for unknown request (id: %r)", output_id)
            return
        if future.done():
            log.warning("Sending a response to deallocated channel: %r", outputs)
            return
        future.set_result(results_from_outputs(outputs))

    def _notify(self, notification: dict[str, Any]) -> None:
        params = notification.get("params")
        if not isinstance(params, dict):
            return
        subscription_id = params.get("subscription")
        if not isinstance(subscription_id, str) or "result" not in params:
            log.error("Got unsupported notification (id: %r)", subscription_id)
            return
        stream = self._subscriptions.get(subscription_id)
        if stream is None:
            log.warning("Got notification for unknown subscription (id: %r)", subscription_id)
            return
        stream.push(params["result"])

    def _finish(self) -> None:
        self._closed = True
        if not self._writer.done():
            self._writer.cancel()
        pending, self._pending = self._pending, {}
        for future in pending.values():
            _fail(future)
        subscriptions, self._subscriptions = self._subscriptions, {}
        for stream in subscriptions.values():
            stream.end()