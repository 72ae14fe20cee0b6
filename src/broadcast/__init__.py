"""Realtime broadcast relay.

One admin drives a live OpenAI Realtime session; a bounded set of viewers
receive its transcripts, assistant text and assistant audio.
"""

from broadcast.admin import AdminSessionRelay, RelayState
from broadcast.config import BroadcastConfig
from broadcast.router import ConnectionRouter
from broadcast.viewers import Viewer, ViewerRegistry

__all__ = [
    "AdminSessionRelay",
    "BroadcastConfig",
    "ConnectionRouter",
    "RelayState",
    "Viewer",
    "ViewerRegistry",
]
