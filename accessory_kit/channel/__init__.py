"""Message channel: framing, send queue and worker threads over a transport."""

from .channel import HandleGuard, MessageChannel
from .feeds import Feed, StateFeed
from .send_queue import SendQueue

__all__ = ["HandleGuard", "MessageChannel", "Feed", "StateFeed", "SendQueue"]
