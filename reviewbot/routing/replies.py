"""Outbound replies: which response class was chosen, plus text and buttons."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

Button = Tuple[str, str]
Keyboard = List[List[Button]]


class ReplyKind(str, Enum):
    SUCCESS = "success"
    NOTICE = "notice"
    VALIDATION_ERROR = "validation_error"
    RATE_LIMITED = "rate_limited"
    UNKNOWN_COMMAND = "unknown_command"
    UNKNOWN_ACTION = "unknown_action"
    UNRECOGNIZED_INPUT = "unrecognized_input"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"


@dataclass
class Reply:
    kind: ReplyKind
    text: str
    buttons: Keyboard = field(default_factory=list)
    screen: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.kind not in (ReplyKind.SUCCESS, ReplyKind.NOTICE)


def success(text: str, buttons: Optional[Keyboard] = None, screen: Optional[str] = None) -> Reply:
    return Reply(ReplyKind.SUCCESS, text, buttons or [], screen)


def notice(text: str, buttons: Optional[Keyboard] = None, screen: Optional[str] = None) -> Reply:
    return Reply(ReplyKind.NOTICE, text, buttons or [], screen)


def error(kind: ReplyKind, text: str, buttons: Optional[Keyboard] = None) -> Reply:
    return Reply(kind, text, buttons or [], screen="error")


MAIN_MENU_BUTTON: Button = ("🏠 Main menu", "main_menu")


def main_menu_keyboard() -> Keyboard:
    return [
        [("📚 Browse courses", "browse_categories")],
        [("✍️ Post a review", "post_review")],
        [("📝 My reviews", "my_reviews")],
        [("❓ Help", "help")],
    ]


def back_to_menu() -> Keyboard:
    return [[MAIN_MENU_BUTTON]]


def pager(page: int, total_pages: int, token_for_page) -> List[Button]:
    """Previous/next row; empty when everything fits on one page."""
    row: List[Button] = []
    if page > 1:
        row.append(("⬅️ Prev", token_for_page(page - 1)))
    if page < total_pages:
        row.append(("Next ➡️", token_for_page(page + 1)))
    return row


def unrecognized_input() -> Reply:
    return Reply(
        ReplyKind.UNRECOGNIZED_INPUT,
        "I wasn't expecting a message here. Use the buttons or /start.",
        back_to_menu(),
    )
