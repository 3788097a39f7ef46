# src/netrelay/relay/__init__.py
"""Network adapters: relay service HTTP client and JSON-RPC receipt poller."""

from __future__ import annotations

from .client import RelayClient
from .rpc import JsonRpcConfirmer


__all__ = ["RelayClient", "JsonRpcConfirmer"]
