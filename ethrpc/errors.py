"""Errors raised by transports."""

from __future__ import annotations

from typing import Any


class Error(Exception):
    """Base class of every transport error.

    Two errors compare equal when they are of the same class and carry the
    same arguments.
    """

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Error):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), repr(self.args)))


class TransportError(Error):
    """The underlying connection failed or delivered something unusable."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidResponseError(Error):
    """The peer answered, but the answer does not fit the request."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RpcError(Error):
    """The peer answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(code, message, data)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        text = f"RPC error {self.code}: {self.message}"
        if self.data is not None:
            text += f" ({self.data!r})"
        return text


class InternalError(Error):
    """A request was left without an answer by the transport itself."""

    def __init__(self) -> None:
        super().__init__("internal error")


class UnreachableError(Error):
    """A request was made that no response was prepared for."""

    def __init__(self) -> None:
        super().__init__("unreachable")