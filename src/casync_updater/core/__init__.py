"""Subprocess and network adapters shared by the sync cycle and the publisher."""

from .async_utils import run_sync
from .client import ReplicaClient

__all__ = ["ReplicaClient", "run_sync"]
