"""Blocking sends for synchronous requests."""

from xmlhttprequest.sync_bridge.bridge import (
    DirectSyncBridge,
    ProcessSyncBridge,
    SyncBridge,
    create_bridge,
)

__all__ = [
    "DirectSyncBridge",
    "ProcessSyncBridge",
    "SyncBridge",
    "create_bridge",
]
