"""Asyncio JSON-RPC transports for Ethereum nodes: HTTP, IPC, WebSocket, batching and a fake."""

__version__ = "0.1.0"