"""
Event dispatch.

Commands go through a small table keyed by the leading ``/word``; button
tokens are parsed into typed actions and dispatched on the action class; free
text is handed to the handler registered for the subject's current state.
Engine errors are turned into replies here so nothing technical reaches the
transport.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from reviewbot.conversation.drafts import DraftEditor
from reviewbot.conversation.states import ConversationState
from reviewbot.conversation.store import StateSnapshot
from reviewbot.errors import (
    Conflict,
    DuplicateSubmission,
    InvalidTransition,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from reviewbot.reviews.catalog import CourseCatalog
from reviewbot.reviews.service import ReviewService
from reviewbot.routing import tokens
from reviewbot.routing.events import EventKind, InboundEvent
from reviewbot.routing.handlers.base import ActionHandler, TextHandler
from reviewbot.routing.handlers.browsing import BrowsingHandlers
from reviewbot.routing.handlers.editing import EditingHandlers
from reviewbot.routing.handlers.my_reviews import MyReviewsHandlers
from reviewbot.routing.handlers.posting import PostingHandlers
from reviewbot.routing.replies import (
    MAIN_MENU_BUTTON,
    Reply,
    ReplyKind,
    back_to_menu,
    error,
    main_menu_keyboard,
    notice,
    success,
    unrecognized_input,
)

logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "👋 Welcome to the course review bot!\n\n"
    "Browse honest reviews from fellow students, or share your own."
)

HELP_TEXT = (
    "ℹ️ How it works\n\n"
    "• Browse courses: pick a category and a course to read its reviews.\n"
    "• Post a review: rate overall, quality and difficulty from 1 to 5, "
    "optionally add text, and choose whether to post anonymously.\n"
    "• My reviews: edit or delete what you have posted.\n\n"
    "Use /start at any time to return to the main menu."
)

CommandHandler = Callable[[int, StateSnapshot], Awaitable[Reply]]


def command_name(token: str) -> str:
    """``/start@SomeBot extra`` -> ``/start``."""
    parts = (token or "").split()
    if not parts:
        return ""
    return parts[0].split("@", 1)[0].lower()


class EventRouter:
    def __init__(
        self,
        sessions,
        drafts: DraftEditor,
        service: ReviewService,
        catalog: CourseCatalog,
    ) -> None:
        self.sessions = sessions
        self.drafts = drafts

        self._commands: Dict[str, CommandHandler] = {
            "/start": self._start,
            "/help": self._help,
        }
        self._actions: Dict[type, ActionHandler] = {
            tokens.MainMenu: self._main_menu,
            tokens.Help: lambda subject_id, current, action: self._help(subject_id, current),
            tokens.Back: self._back,
        }
        self._text: Dict[ConversationState, TextHandler] = {}
        for handlers in (
            BrowsingHandlers(sessions, drafts, service, catalog),
            PostingHandlers(sessions, drafts, service, catalog),
            MyReviewsHandlers(sessions, drafts, service, catalog),
            EditingHandlers(sessions, drafts, service, catalog),
        ):
            self._actions.update(handlers.actions())
            self._text.update(handlers.text_handlers())

    async def current_state(self, subject_id: int) -> StateSnapshot:
        snapshot = await self.sessions.get_state(subject_id)
        return snapshot or StateSnapshot(state=ConversationState.ROOT, context={})

    async def dispatch(self, event: InboundEvent) -> Reply:
        subject_id = event.subject_id
        try:
            current = await self.current_state(subject_id)
            if event.kind is EventKind.COMMAND:
                return await self._dispatch_command(subject_id, current, event.command_token or "")
            if event.kind is EventKind.CALLBACK:
                return await self._dispatch_callback(subject_id, current, event.callback_token or "")
            return await self._dispatch_text(subject_id, current, event.text or "")
        except ValidationError as e:
            return error(ReplyKind.VALIDATION_ERROR, f"⚠️ {e}")
        except Conflict as e:
            return error(ReplyKind.CONFLICT, f"🚫 {e}")
        except DuplicateSubmission as e:
            return await self._offer_edit(e)
        except InvalidTransition as e:
            logger.warning(
                "invalid_transition",
                extra={"subject_id": subject_id, "from_state": e.from_state, "to_state": e.to_state},
            )
            await self.sessions.set_state(subject_id, ConversationState.ROOT)
            return notice(
                "That option is no longer available. Here is the main menu.",
                main_menu_keyboard(),
                screen="main_menu",
            )
        except NotFound as e:
            logger.info("not_found", extra={"subject_id": subject_id, "detail": str(e)})
            await self.sessions.set_state(subject_id, ConversationState.ROOT)
            return error(
                ReplyKind.NOT_FOUND,
                "That item could not be found. It may have been removed.",
                main_menu_keyboard(),
            )
        except StoreUnavailable:
            return error(
                ReplyKind.UNAVAILABLE,
                "The service is temporarily unavailable. Please try again in a moment.",
            )

    async def _dispatch_command(self, subject_id: int, current: StateSnapshot, token: str) -> Reply:
        handler = self._commands.get(command_name(token))
        if handler is None:
            return error(
                ReplyKind.UNKNOWN_COMMAND,
                "Unknown command. Use /start or /help.",
                back_to_menu(),
            )
        return await handler(subject_id, current)

    async def _dispatch_callback(self, subject_id: int, current: StateSnapshot, token: str) -> Reply:
        action = tokens.parse_callback_token(token)
        handler = self._actions.get(type(action)) if action is not None else None
        if handler is None:
            logger.info("unknown_action", extra={"subject_id": subject_id, "token": token})
            return error(ReplyKind.UNKNOWN_ACTION, "This button is no longer supported.", back_to_menu())
        return await handler(subject_id, current, action)

    async def _dispatch_text(self, subject_id: int, current: StateSnapshot, text: str) -> Reply:
        if text.startswith("/"):
            return await self._dispatch_command(subject_id, current, text)
        handler = self._text.get(current.state)
        if handler is None:
            return unrecognized_input()
        return await handler(subject_id, current, text)

    async def _reset(self, subject_id: int) -> Optional[Reply]:
        if not await self.drafts.discard(subject_id):
            return notice("Your review is being saved, please wait a moment.")
        await self.sessions.set_state(subject_id, ConversationState.ROOT)
        return None

    async def _start(self, subject_id: int, current: StateSnapshot) -> Reply:
        busy = await self._reset(subject_id)
        if busy:
            return busy
        logger.info("session_started", extra={"subject_id": subject_id})
        return success(WELCOME_TEXT, main_menu_keyboard(), screen="main_menu")

    async def _main_menu(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        busy = await self._reset(subject_id)
        if busy:
            return busy
        return success("What would you like to do?", main_menu_keyboard(), screen="main_menu")

    async def _back(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        target = tokens.resolve_back(action.target, current.context)
        return await self._actions[type(target)](subject_id, current, target)

    async def _help(self, subject_id: int, current: StateSnapshot) -> Reply:
        return success(HELP_TEXT, [[MAIN_MENU_BUTTON]], screen="help")

    async def _offer_edit(self, exc: DuplicateSubmission) -> Reply:
        # Back through ROOT into the existing review.
        await self.sessions.set_state(
            exc.subject_id,
            ConversationState.VIEWING_OWN_RECORDS,
            {"review_id": exc.existing_review_id},
        )
        keyboard = [
            [("✏️ Edit my review", f"edit_review_{exc.existing_review_id}")],
            [("📄 View it", f"manage_review_{exc.existing_review_id}"), MAIN_MENU_BUTTON],
        ]
        return error(
            ReplyKind.DUPLICATE,
            f"You have already reviewed {exc.course_id}. Would you like to edit it instead?",
            keyboard,
        )
