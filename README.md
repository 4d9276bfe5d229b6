# ethrpc

Asyncio transports that send JSON-RPC 2.0 calls to an Ethereum node. It supports HTTP,
Unix-socket IPC and WebSocket. Calls through a batch-capable transport can be grouped
into batches.

## Installation

```
pip install ethrpc
```

To run the test suite, install the `test` extra and run pytest:

```
pip install "ethrpc[test]"
pytest
```

## The transport interface

`ethrpc.transport` defines the abstract base classes that every transport implements.

- `Transport`
  - `prepare(method, params)` returns a `(request_id, call)` pair. `call` is a JSON-RPC
    request object held in a dict.
  - `await send(request_id, call)` sends the prepared call and returns its result.
  - `await execute(method, params)` does both steps in one call.
- `BatchTransport` adds `await send_batch(requests)`. It takes `(request_id, call)` pairs
  and returns a list with one entry per call, in the order the calls were given. Each entry
  is either the call's result or an `Error` instance.
- `DuplexTransport` adds `subscribe(subscription_id)`, which returns an async iterator of
  notification values, and `unsubscribe(subscription_id)`.

The module also has helpers that the transports use: `build_request`, `dumps_request`
(compact JSON), `result_from_output` and `results_from_outputs`.

### HTTP

`ethrpc.http_transport.Http` sends each call, or each batch, as one POST request.
Request ids start at 0. If you pass an `aiohttp.ClientSession`, `Http` uses it and leaves
it open. If you don't, `Http` creates its own session and `close()` closes it. `Http` can
also be used as an async context manager.

```python
import asyncio
from ethrpc.http_transport import Http

async def main():
    async with Http("http://localhost:8545") as http:
        print(await http.execute("eth_blockNumber", []))

asyncio.run(main())
```

In a batch response, the results can come back in any order. `handle_batch_response(ids,
outputs)` puts them back in the order of the request ids. It raises
`InvalidResponseError` in three cases: the count does not match, an id is missing, or an
id is not a non-negative integer.

### IPC (Unix sockets)

`ethrpc.ipc.Ipc` writes calls to a stream socket. A background task reads the replies. It
matches each response to the call that has the same id, and sends each notification to
its subscription. Request ids start at 1.

```python
from ethrpc.ipc import Ipc

async def main():
    async with await Ipc.connect("/tmp/node.ipc") as ipc:
        accounts = await ipc.execute("eth_accounts", [])
```

`Ipc.with_stream(reader, writer)` wraps an asyncio stream pair that is already open. Call
it while the event loop is running. `close()` waits for the calls still in flight and then
closes the socket. If the connection ends, calls still waiting fail with `TransportError`
and subscription streams stop.

### WebSocket

`ethrpc.ws.WebSocket` works in the same way over a WebSocket connection.

```python
from ethrpc.ws import WebSocket

async def main():
    ws = await WebSocket.connect("ws://localhost:8546")
    try:
        result = await ws.execute("eth_accounts", [])
        notifications = ws.subscribe("0x1")
        async for value in notifications:
            ...
    finally:
        await ws.close()
```

Only `ws://` and `wss://` URLs are accepted, and the URL must include a host. Anything
else raises `TransportError`. `resolve_endpoint(url)` checks a URL and returns its parts:
scheme, host, port and resource. If the URL has no port, it uses 80 for `ws` and 443 for
`wss`.

### Batching

`ethrpc.batch.Batch` wraps a batch-capable transport. Calls passed to its `send` are
queued rather than sent, and each returns a future. `submit_batch()` sends everything in
the queue as one batch. Each future then resolves with the result of its call, or raises
that call's error. A call that has no entry in the reply fails with `InternalError`.

```python
from ethrpc.batch import Batch

batch = Batch(http)
first = batch.send(*batch.prepare("eth_blockNumber", []))
second = batch.send(*batch.prepare("eth_chainId", []))
await batch.submit_batch()
print(await first, await second)
```

### Choosing at runtime

`ethrpc.either.Either(transport)` wraps any transport and passes every call through to
it. This lets code that accepts one type work with whichever transport was chosen.
`send_batch`, `subscribe` and `unsubscribe` raise `TypeError` if the wrapped transport
does not provide them.

### Testing your code

`ethrpc.fake.TestTransport` records each request and answers with responses you queue in
advance. Use `add_response` to append a response and `set_response` to replace the whole
queue. If a call arrives when the queue is empty, it raises `UnreachableError`. Pass the
expected params to `assert_request` as JSON text.

```python
from ethrpc.fake import TestTransport

transport = TestTransport()
transport.add_response("0x1")
assert await transport.execute("eth_getBalance", ["0x0", "latest"]) == "0x1"
transport.assert_request("eth_getBalance", ['"0x0"', '"latest"'])
transport.assert_no_more_requests()
```

## Errors

Every failure is raised as a subclass of `ethrpc.errors.Error`. Two errors compare equal
when they have the same class and the same arguments.

| Exception | Raised when |
| --- | --- |
| `TransportError` | the connection or the request failed, or the transport is closed |
| `InvalidResponseError` | the reply does not fit the request |
| `RpcError` | the node returned a JSON-RPC error object (`code`, `message`, `data`) |
| `InternalError` | a batched call was left without an answer |
| `UnreachableError` | `TestTransport` had no response queued |

## What this package does not do

It provides transports only. It has no typed API for Ethereum methods, it does not encode
or decode Ethereum types, and it has no command-line tool. It has no transport for wallet
providers that run inside a web browser. Connections that drop are not reopened.