"""TIM transport: HTTP client and async bridging."""

from .async_utils import RemoteLimiter, run_sync
from .client import ItemType, RemoteNode, TimClient

__all__ = ["ItemType", "RemoteLimiter", "RemoteNode", "TimClient", "run_sync"]
