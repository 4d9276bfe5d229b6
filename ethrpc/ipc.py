"""JSON-RPC over a Unix domain socket."""

from __future__ import annotations

import asyncio
import codecs
import itertools
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Iterable

from .errors import Error, TransportError
from .transport import DuplexTransport, BatchTransport, build_request, dumps_request, result_from_output

log = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_SEND_ERROR = "Send Error: transport closed"
_RECV_ERROR = "Recv Error: channel closed"
_WHITESPACE = " \t\n\r"
_NOTIFICATION_KEYS = frozenset({"jsonrpc", "method", "params"})
_OUTPUT_KEYS = frozenset({"jsonrpc", "result", "error", "id"})


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
            # Leave the end marker in place so later reads also stop.
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


def _is_response(value: Any) -> bool:
    if isinstance(value, list):
        return all(_is_output(item) for item in value)
    return _is_output(value)


def _fail(future: asyncio.Future[Any]) -> None:
    if not future.done():
        future.set_exception(TransportError(_RECV_ERROR))


async def _raise(error: Error) -> Any:
    raise error


async def _single(future: asyncio.Future[Any]) -> Any:
    return result_from_output(await future)


async def _batch(futures: list[asyncio.Future[Any]]) -> list[Any]:
    outcomes = await asyncio.gather(*futures, return_exceptions=True)
    results: list[Any] = []
    for outcome in outcomes:
        if isinstance(outcome, Error):
            results.append(outcome)
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            try:
                results.append(result_from_output(outcome))
            except Error as err:
                results.append(err)
    return results


class Ipc(BatchTransport, DuplexTransport):
    """Send calls over a stream socket and route the answers back.

    A background task reads the socket, hands each response to the call
    waiting for its id and each notification to its subscription.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._loop = asyncio.get_running_loop()
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._subscriptions: dict[str, _Notifications] = {}
        self._decoder = json.JSONDecoder()
        self._closed = False
        self._closing = False
        self._task = self._loop.create_task(self._run())

    @classmethod
    async def connect(cls, path: str) -> Ipc:
        """Connect to the socket at ``path``."""
        try:
            reader, writer = await asyncio.open_unix_connection(path)
        except OSError as err:
            raise TransportError(str(err)) from err
        return cls.with_stream(reader, writer)

    @classmethod
    def with_stream(cls, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> Ipc:
        """Use an already open stream; must be called with a running event loop."""
        return cls(reader, writer)

    async def __aenter__(self) -> Ipc:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        request_id = next(self._ids)
        return request_id, build_request(request_id, method, params)

    def send(self, request_id: int, call: dict[str, Any]) -> Awaitable[Any]:
        try:
            (future,) = self._enqueue([(request_id, call)], batch=False)
        except TransportError as err:
            return _raise(err)
        return _single(future)

    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]) -> Awaitable[list[Any]]:
        try:
            futures = self._enqueue(list(requests), batch=True)
        except TransportError as err:
            return _raise(err)
        return _batch(futures)

    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        self._check_open()
        stream = _Notifications()
        previous = self._subscriptions.get(subscription_id)
        if previous is not None:
            log.warning("Replacing a subscription with id %r", subscription_id)
            previous.end()
        self._subscriptions[subscription_id] = stream
        return stream

    def unsubscribe(self, subscription_id: str) -> None:
        self._check_open()
        stream = self._subscriptions.pop(subscription_id, None)
        if stream is None:
            log.warning("Unsubscribing not subscribed id %r", subscription_id)
        else:
            stream.end()

    async def close(self) -> None:
        """Stop taking calls, wait for those in flight, then close the socket."""
        if self._closing:
            return
        self._closing = True
        pending = list(self._pending.values())
        if pending and not self._task.done():
            await asyncio.wait(pending)
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._finish()
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass

    def _check_open(self) -> None:
        if self._closed or self._closing:
            raise TransportError(_SEND_ERROR)

    def _enqueue(self, requests: list[tuple[int, dict[str, Any]]], *, batch: bool) -> list[asyncio.Future[Any]]:
        self._check_open()
        futures: list[asyncio.Future[Any]] = []
        for request_id, _ in requests:
            future = self._loop.create_future()
            previous = self._pending.get(request_id)
            if previous is not None:
                log.warning("Replacing a pending request with id %r", request_id)
                _fail(previous)
            self._pending[request_id] = future
            futures.append(future)
        calls = [call for _, call in requests]
        payload = dumps_request(calls if batch else calls[0])
        try:
            if self._writer.is_closing():
                raise ConnectionError("connection is closed")
            self._writer.write(payload.encode())
        except (OSError, RuntimeError) as err:
            log.error("IPC write error: %r", err)
            for (request_id, _), future in zip(requests, futures):
                if self._pending.get(request_id) is future:
                    del self._pending[request_id]
                _fail(future)
        return futures

    async def _run(self) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")("replace")
        text = ""
        try:
            while True:
                chunk = await self._reader.read(_CHUNK_SIZE)
                if not chunk:
                    break
                text = self._consume(text + decoder.decode(chunk))
        except OSError as err:
            log.error("IPC read error: %r", err)
        finally:
            self._finish()

    def _consume(self, text: str) -> str:
        """Handle every complete JSON value in ``text``; return what is left."""
        pos = 0
        while True:
            while pos < len(text) and text[pos] in _WHITESPACE:
                pos += 1
            if pos >= len(text):
                break
            try:
                value, pos = self._decoder.raw_decode(text, pos)
            except json.JSONDecodeError:
                break
            self._handle(value)
        return text[pos:]

    def _handle(self, value: Any) -> None:
        if _is_notification(value):
            self._notify(value)
        elif _is_response(value):
            for output in value if isinstance(value, list) else [value]:
                self._respond(output)
        else:
            log.warning("JSON is not a response or notification")

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

    def _respond(self, output: dict[str, Any]) -> None:
        output_id = output["id"]
        if not isinstance(output_id, int):
            log.warning("Got unsupported response (id: %r)", output_id)
            return
        future = self._pending.pop(output_id, None)
        if future is None:
            log.warning("Got response for unknown request (id: %r)", output_id)
            return
        if future.done():
            log.warning("Sending a response to deallocated channel: %r", output)
            return
        future.set_result(output)

    def _finish(self) -> None:
        self._closed = True
        pending, self._pending = self._pending, {}
        for future in pending.values():
            _fail(future)
        subscriptions, self._subscriptions = self._subscriptions, {}
        for stream in subscriptions.values():
            stream.end()