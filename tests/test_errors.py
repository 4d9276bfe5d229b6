import pytest

from ethrpc.errors import (
    Error,
    InternalError,
    InvalidResponseError,
    RpcError,
    TransportError,
    UnreachableError,
)


def test_errors_with_same_class_and_message_are_equal():
    first = TransportError("failed")
    second = TransportError("failed")
    assert first.message == "failed"
    assert first == second
    assert hash(first) == hash(second)


def test_errors_of_different_classes_differ():
    assert TransportError("failed") != InvalidResponseError("failed")
    assert InternalError() != UnreachableError()


def test_rpc_error_keeps_its_fields():
    err = RpcError(15, "string1", "string2")
    assert (err.code, err.message, err.data) == (15, "string1", "string2")
    assert err == RpcError(15, "string1", "string2")
    assert err != RpcError(15, "string1")


def test_rpc_error_str_mentions_code_and_message():
    text = str(RpcError(15, "string1"))
    assert "15" in text
    assert "string1" in text


@pytest.mark.parametrize(
    "err",
    [TransportError("x"), InvalidResponseError("x"), RpcError(1, "x"), InternalError(), UnreachableError()],
)
def test_every_error_can_be_caught_as_base(err):
    with pytest.raises(Error) as info:
        raise err
    assert info.value == err


def test_message_attribute_matches_argument():
    assert TransportError("failed to parse url").message == "failed to parse url"
    assert InvalidResponseError("unexpected number of responses").args == ("unexpected number of responses",)