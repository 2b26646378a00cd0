from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EventKind(str, Enum):
    COMMAND = "command"
    CALLBACK = "callback"
    TEXT = "text"


@dataclass(frozen=True)
class InboundEvent:
    """One message or button tap from a subject, already stripped of transport details."""

    subject_id: int
    kind: EventKind
    command_token: Optional[str] = None
    callback_token: Optional[str] = None
    text: Optional[str] = None
    chat_id: Optional[int] = None
    callback_query_id: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def command(cls, subject_id: int, token: str, **kwargs) -> "InboundEvent":
        return cls(subject_id=subject_id, kind=EventKind.COMMAND, command_token=token, **kwargs)

    @classmethod
    def callback(cls, subject_id: int, token: str, **kwargs) -> "InboundEvent":
        return cls(subject_id=subject_id, kind=EventKind.CALLBACK, callback_token=token, **kwargs)

    @classmethod
    def message(cls, subject_id: int, text: str, **kwargs) -> "InboundEvent":
        return cls(subject_id=subject_id, kind=EventKind.TEXT, text=text, **kwargs)
