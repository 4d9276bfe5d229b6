"""A transport that collects calls and sends them as one batch."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from .errors import Error, InternalError
from .transport import BatchTransport, Transport


class Batch(Transport):
    """Queue calls made through it until ``submit_batch`` sends them together."""

    def __init__(self, transport: BatchTransport) -> None:
        self.transport = transport
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._batch: list[tuple[int, dict[str, Any]]] = []

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        return self.transport.prepare(method, params)

    def send(self, request_id: int, call: dict[str, Any]) -> asyncio.Future[Any]:
        """Queue a call; the returned future resolves once the batch is answered."""
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self._batch.append((request_id, call))
        return future

    def submit_batch(self) -> Awaitable[list[Any]]:
        """Send every queued call; the awaitable yields the batch results."""
        batch, self._batch = self._batch, []
        ids = [request_id for request_id, _ in batch]
        return self._complete(ids, self.transport.send_batch(batch))

    async def _complete(self, ids: list[int], sent: Awaitable[list[Any]]) -> list[Any]:
        try:
            results = await sent
        except Error as err:
            for request_id in ids:
                self._settle(request_id, err)
            raise
        for idx, request_id in enumerate(ids):
            self._settle(request_id, results[idx] if idx < len(results) else InternalError())
        return results

    def _settle(self, request_id: int, outcome: Any) -> None:
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return
        if isinstance(outcome, Error):
            future.set_exception(outcome)
        else:
            future.set_result(outcome)