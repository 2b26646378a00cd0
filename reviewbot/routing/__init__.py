from reviewbot.routing.events import EventKind, InboundEvent
from reviewbot.routing.replies import Reply, ReplyKind
from reviewbot.routing.router import EventRouter
from reviewbot.routing.tokens import parse_callback_token

__all__ = [
    "EventKind",
    "EventRouter",
    "InboundEvent",
    "Reply",
    "ReplyKind",
    "parse_callback_token",
]
