"""JSON-RPC over HTTP POST."""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Iterable
from urllib.parse import urlsplit

import aiohttp

from .errors import InvalidResponseError, TransportError
from .transport import BatchTransport, dumps_request, result_from_output, results_from_outputs

log = logging.getLogger(__name__)

USER_AGENT = "ethrpc"


def _id_of_output(output: Any) -> int:
    request_id = output.get("id") if isinstance(output, dict) else None
    if isinstance(request_id, int) and not isinstance(request_id, bool) and request_id >= 0:
        return request_id
    raise InvalidResponseError("response id is not u64")


def handle_batch_response(ids: list[int], outputs: list[Any]) -> list[Any]:
    """Match batch outputs to request ids, restoring the order of the ids.

    Entries are results, or ``Error`` instances for calls that failed.
    """
    if len(ids) != len(outputs):
        raise InvalidResponseError("unexpected number of responses")
    keyed = [_id_of_output(output) for output in outputs]
    by_id = dict(zip(keyed, results_from_outputs(outputs)))
    results = []
    for request_id in ids:
        if request_id not in by_id:
            raise InvalidResponseError(f"batch response is missing id {request_id}")
        results.append(by_id.pop(request_id))
    return results


class Http(BatchTransport):
    """Send each call, or each batch, as one HTTP POST request."""

    def __init__(self, url: str, session: aiohttp.ClientSession | None = None) -> None:
        parts = urlsplit(url)
        if not parts.scheme:
            raise TransportError("failed to parse url: relative URL without a base")
        self.url = url
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(0)

    async def __aenter__(self) -> Http:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _execute_rpc(self, request: Any, request_id: int) -> Any:
        body = dumps_request(request)
        log.debug("[id:%s] sending request: %s", request_id, body)
        try:
            async with self._client().post(
                self.url, data=body.encode(), headers={"Content-Type": "application/json"}
            ) as response:
                status, reason = response.status, response.reason
                try:
                    raw = await response.read()
                except aiohttp.ClientError as err:
                    raise TransportError(f"failed to read response bytes: {err}") from err
        except aiohttp.ClientError as err:
            raise TransportError(f"failed to send request: {err}") from err
        log.debug("[id:%s] received response: %s", request_id, raw.decode("utf-8", errors="replace"))
        if not 200 <= status < 300:
            raise TransportError(f"response status code is not success: {status} {reason}")
        try:
            return json.loads(raw)
        except ValueError as err:
            raise TransportError(f"failed to deserialize response: {err}") from err

    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        request_id = next(self._ids)
        return request_id, {"jsonrpc": "2.0", "method": method, "params": list(params), "id": request_id}

    async def send(self, request_id: int, call: dict[str, Any]) -> Any:
        output = await self._execute_rpc(call, request_id)
        return result_from_output(output)

    async def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]) -> list[Any]:
        request_id = next(self._ids)
        pairs = list(requests)
        ids = [pair[0] for pair in pairs]
        calls = [pair[1] for pair in pairs]
        outputs = await self._execute_rpc(calls, request_id)
        if not isinstance(outputs, list):
            raise TransportError("failed to deserialize response: expected a JSON array")
        return handle_batch_response(ids, outputs)