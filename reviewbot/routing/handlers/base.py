from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from reviewbot.conversation.drafts import DraftEditor
from reviewbot.conversation.states import ConversationState, is_valid_transition
from reviewbot.conversation.store import StateSnapshot
from reviewbot.errors import InvalidTransition
from reviewbot.reviews.catalog import CourseCatalog
from reviewbot.reviews.models import RatingDimension, Ratings
from reviewbot.reviews.service import ReviewService
from reviewbot.routing.replies import Reply

logger = logging.getLogger(__name__)

ActionHandler = Callable[[int, StateSnapshot, Any], Awaitable[Reply]]
TextHandler = Callable[[int, StateSnapshot, str], Awaitable[Reply]]

STARS = {1: "★☆☆☆☆", 2: "★★☆☆☆", 3: "★★★☆☆", 4: "★★★★☆", 5: "★★★★★"}


def stars(value: Optional[float]) -> str:
    if not value:
        return "–"
    return STARS.get(int(round(value)), "–")


def format_ratings(ratings: Ratings) -> str:
    return "\n".join(
        f"{dimension.value.capitalize()}: {stars(ratings.get(dimension))}"
        for dimension in RatingDimension
    )


class Handlers:
    """Shared collaborators and the validated state change used by every step handler."""

    def __init__(
        self,
        sessions,
        drafts: DraftEditor,
        service: ReviewService,
        catalog: CourseCatalog,
    ) -> None:
        self.sessions = sessions
        self.drafts = drafts
        self.service = service
        self.catalog = catalog

    def ensure(self, subject_id: int, current: StateSnapshot, target: ConversationState) -> None:
        if not is_valid_transition(current.state, target):
            raise InvalidTransition(subject_id, current.state.value, target.value)

    async def transition(
        self,
        subject_id: int,
        current: StateSnapshot,
        target: ConversationState,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.ensure(subject_id, current, target)
        await self.sessions.set_state(subject_id, target, context)
        logger.debug(f"Subject {subject_id}: {current.state.value} -> {target.value}")

    def actions(self) -> Dict[type, ActionHandler]:
        return {}

    def text_handlers(self) -> Dict[ConversationState, TextHandler]:
        return {}
