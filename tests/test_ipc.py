import asyncio
import json
import socket

import pytest

from ethrpc.errors import RpcError, TransportError
from ethrpc.ipc import Ipc

TIMEOUT = 5


async def _pair():
    left, right = socket.socketpair()
    reader, writer = await asyncio.open_unix_connection(sock=left)
    ipc = Ipc.with_stream(reader, writer)
    node_reader, node_writer = await asyncio.open_unix_connection(sock=right)
    return ipc, node_reader, node_writer


async def _read_values(reader, count):
    decoder = json.JSONDecoder()
    text = ""
    values = []
    while len(values) < count:
        chunk = await reader.read(4096)
        if not chunk:
            break
        text += chunk.decode()
        pos = 0
        while True:
            while pos < len(text) and text[pos] in " \t\r\n":
                pos += 1
            if pos >= len(text):
                break
            try:
                value, pos = decoder.raw_decode(text, pos)
            except json.JSONDecodeError:
                break
            values.append(value)
        text = text[pos:]
    return values


async def _collect(stream):
    return [value async for value in stream]


async def _node_single(reader, writer):
    received = []
    received += await _read_values(reader, 1)
    writer.write(b'{"jsonrpc": "2.0", "id": 1, "result": {"test": 1}}')
    await writer.drain()
    received += await _read_values(reader, 1)
    response = b'{"jsonrpc": "2.0", "id": 2, "result": {"test": "string1"}}'
    for start in range(0, len(response), 3):
        writer.write(response[start:start + 3])
        await writer.drain()
    return received


@pytest.mark.asyncio
async def test_works_for_single_requests():
    ipc, node_reader, node_writer = await _pair()
    node = asyncio.create_task(_node_single(node_reader, node_writer))

    req_id, request = ipc.prepare("eth_test", [{"test": -1}])
    response = await asyncio.wait_for(ipc.send(req_id, request), TIMEOUT)
    assert response == {"test": 1}

    req_id, request = ipc.prepare("eth_test", [{"test": 3}])
    response = await asyncio.wait_for(ipc.send(req_id, request), TIMEOUT)
    assert response == {"test": "string1"}

    received = await asyncio.wait_for(node, TIMEOUT)
    assert received == [
        {"jsonrpc": "2.0", "method": "eth_test", "id": 1, "params": [{"test": -1}]},
        {"jsonrpc": "2.0", "method": "eth_test", "id": 2, "params": [{"test": 3}]},
    ]
    node_writer.close()
    await ipc.close()


async def _node_batch(reader, writer):
    received = await _read_values(reader, 1)
    response = [
        {"jsonrpc": "2.0", "id": 1, "result": {"test": 1}},
        {"jsonrpc": "2.0", "id": 2, "result": {"test": "string1"}},
    ]
    writer.write(json.dumps(response).encode())
    await writer.drain()
    return received


@pytest.mark.asyncio
async def test_works_for_batch_request():
    ipc, node_reader, node_writer = await _pair()
    node = asyncio.create_task(_node_batch(node_reader, node_writer))

    requests = [ipc.prepare("eth_test", [v]) for v in ({"test": -1}, {"test": 3})]
    response = await asyncio.wait_for(ipc.send_batch(requests), TIMEOUT)
    assert response == [{"test": 1}, {"test": "string1"}]

    received = await asyncio.wait_for(node, TIMEOUT)
    assert received == [[
        {"jsonrpc": "2.0", "method": "eth_test", "id": 1, "params": [{"test": -1}]},
        {"jsonrpc": "2.0", "method": "eth_test", "id": 2, "params": [{"test": 3}]},
    ]]
    node_writer.close()
    await ipc.close()


async def _node_partial_batches(reader, writer):
    received = await _read_values(reader, 3)
    response = [
        {"jsonrpc": "2.0", "id": 1, "result": {"test": 0}},
        {"jsonrpc": "2.0", "id": "2", "result": {"test": 2}},
        {"jsonrpc": "2.0", "id": 3, "result": {"test": 2}},
    ]
    writer.write(json.dumps(response).encode())
    await writer.drain()
    writer.close()
    return received


@pytest.mark.asyncio
async def test_works_for_partial_batches():
    ipc, node_reader, node_writer = await _pair()
    node = asyncio.create_task(_node_partial_batches(node_reader, node_writer))

    calls = [ipc.execute("eth_test", [v]) for v in ({"test": 0}, {"test": 1}, {"test": 2})]
    responses = await asyncio.wait_for(asyncio.gather(*calls, return_exceptions=True), TIMEOUT)

    assert responses[0] == {"test": 0}
    assert responses[2] == {"test": 2}
    assert isinstance(responses[1], TransportError)
    received = await asyncio.wait_for(node, TIMEOUT)
    assert [r["id"] for r in received] == [1, 2, 3]
    await ipc.close()


@pytest.mark.asyncio
async def test_prepare_numbers_requests_from_one():
    ipc, _, node_writer = await _pair()
    first = ipc.prepare("eth_a", [])
    second = ipc.prepare("eth_b", ["x"])
    assert first == (1, {"jsonrpc": "2.0", "method": "eth_a", "params": [], "id": 1})
    assert second == (2, {"jsonrpc": "2.0", "method": "eth_b", "params": ["x"], "id": 2})
    node_writer.close()
    await ipc.close()


@pytest.mark.asyncio
async def test_rpc_error_response_raises():
    ipc, node_reader, node_writer = await _pair()
    pending = asyncio.ensure_future(ipc.execute("eth_fail", []))
    await _read_values(node_reader, 1)
    node_writer.write(b'{"jsonrpc":"2.0","id":1,"error":{"code":-32000,"message":"boom","data":"why"}}')
    await node_writer.drain()
    with pytest.raises(RpcError) as info:
        await asyncio.wait_for(pending, TIMEOUT)
    assert info.value == RpcError(-32000, "boom", "why")
    node_writer.close()
    await ipc.close()


@pytest.mark.asyncio
async def test_notifications_reach_their_subscription():
    ipc, _, node_writer = await _pair()
    stream = ipc.subscribe("0x1")
    node_writer.write(
        b'{"jsonrpc":"2.0","method":"eth_subscription","params":{"subscription":"0x9","result":0}}'
        b'{"jsonrpc":"2.0","method":"eth_subscription","params":{"subscription":"0x1","result":42}}'
        b'{"jsonrpc":"2.0","method":"eth_subscription","params":{"subscription":"0x1","result":"a"}}'
    )
    await node_writer.drain()
    assert await asyncio.wait_for(anext(stream), TIMEOUT) == 42
    assert await asyncio.wait_for(anext(stream), TIMEOUT) == "a"
    ipc.unsubscribe("0x1")
    assert await asyncio.wait_for(_collect(stream), TIMEOUT) == []
    node_writer.close()
    await ipc.close()


@pytest.mark.asyncio
async def test_end_of_stream_fails_pending_and_ends_subscriptions():
    ipc, _, node_writer = await _pair()
    stream = ipc.subscribe("0xa")
    pending = ipc.send(*ipc.prepare("eth_test", []))
    node_writer.close()
    with pytest.raises(TransportError, match="Recv Error"):
        await asyncio.wait_for(pending, TIMEOUT)
    assert await asyncio.wait_for(_collect(stream), TIMEOUT) == []
    await ipc.close()


@pytest.mark.asyncio
async def test_calls_after_close_raise_send_error():
    ipc, _, node_writer = await _pair()
    await ipc.close()
    with pytest.raises(TransportError, match="Send Error"):
        await ipc.execute("eth_test", [])
    with pytest.raises(TransportError, match="Send Error"):
        await ipc.send_batch([ipc.prepare("eth_test", [])])
    with pytest.raises(TransportError, match="Send Error"):
        ipc.subscribe("0x1")
    node_writer.close()


@pytest.mark.asyncio
async def test_connect_to_missing_socket_raises(tmp_path):
    with pytest.raises(TransportError):
        await Ipc.connect(str(tmp_path / "missing.ipc"))