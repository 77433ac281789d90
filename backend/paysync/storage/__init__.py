"""Persistence backends for the webhook pipeline."""

from paysync.storage.base import StateStore, bounded
from paysync.storage.memory import InMemoryStateStore
from paysync.storage.sql import SqlStateStore

__all__ = [
    "InMemoryStateStore",
    "SqlStateStore",
    "StateStore",
    "bounded",
]
