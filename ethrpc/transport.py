"""Transport interfaces and JSON-RPC helpers shared by all transports."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Iterable

from .errors import Error, InvalidResponseError, RpcError

JSONRPC_VERSION = "2.0"


class Transport(ABC):
    """Something that can deliver JSON-RPC calls and return their results."""

    @abstractmethod
    def prepare(self, method: str, params: list[Any]) -> tuple[int, dict[str, Any]]:
        """Give the call an id and build its request object."""

    @abstractmethod
    def send(self, request_id: int, call: dict[str, Any]) -> Awaitable[Any]:
        """Send a prepared call; the awaitable yields its result or raises."""

    async def execute(self, method: str, params: Iterable[Any]) -> Any:
        """Prepare and send a call in one step."""
        request_id, call = self.prepare(method, list(params))
        return await self.send(request_id, call)


class BatchTransport(Transport):
    """A transport that can send several calls in one request.

    A batch yields a list with one entry per call: the call's result, or an
    ``Error`` instance where that call failed.
    """

    @abstractmethod
    def send_batch(self, requests: Iterable[tuple[int, dict[str, Any]]]) -> Awaitable[list[Any]]:
        """Send prepared calls together."""


class DuplexTransport(Transport):
    """A transport that also delivers subscription notifications."""

    @abstractmethod
    def subscribe(self, subscription_id: str) -> AsyncIterator[Any]:
        """Return a stream of the notifications for a subscription."""

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> None:
        """Stop delivering notifications for a subscription."""


def build_request(request_id: int, method: str, params: list[Any]) -> dict[str, Any]:
    """Build a JSON-RPC method call object."""
    return {"jsonrpc": JSONRPC_VERSION, "method": method, "params": list(params), "id": request_id}


def dumps_request(request: dict[str, Any] | list[dict[str, Any]]) -> str:
    """Serialise a single call or a batch as compact JSON."""
    return json.dumps(request, separators=(",", ":"))


def _rpc_error(obj: Any) -> RpcError:
    if not isinstance(obj, dict):
        raise InvalidResponseError(f"invalid error object: {obj!r}")
    code = obj.get("code")
    message = obj.get("message")
    if not isinstance(code, int) or isinstance(code, bool) or not isinstance(message, str):
        raise InvalidResponseError(f"invalid error object: {obj!r}")
    return RpcError(code, message, obj.get("data"))


def result_from_output(output: Any) -> Any:
    """Return the result of a JSON-RPC output, or raise its error."""
    if isinstance(output, dict):
        has_result = "result" in output
        has_error = "error" in output
        if has_result and not has_error:
            return output["result"]
        if has_error and not has_result:
            raise _rpc_error(output["error"])
    raise InvalidResponseError(f"invalid output: {output!r}")


def results_from_outputs(outputs: Iterable[Any]) -> list[Any]:
    """Turn outputs into results, putting an ``Error`` where an output failed."""
    results: list[Any] = []
    for output in outputs:
        try:
            results.append(result_from_output(output))
        except Error as err:
            results.append(err)
    return results