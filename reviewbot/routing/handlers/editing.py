"""Editing an existing review through a draft seeded from it."""

from __future__ import annotations

from reviewbot.conversation.drafts import ReviewDraft
from reviewbot.conversation.states import ConversationState
from reviewbot.conversation.store import StateSnapshot
from reviewbot.errors import NotFound, ValidationError
from reviewbot.reviews.models import MAX_RATING, MAX_TEXT_LENGTH, MIN_RATING, RatingDimension
from reviewbot.routing import tokens
from reviewbot.routing.handlers.base import Handlers, format_ratings
from reviewbot.routing.handlers.my_reviews import manage_keyboard, review_card
from reviewbot.routing.replies import Keyboard, Reply, notice, success

CLEAR_TEXT = "-"


def edit_keyboard(review_id: str) -> Keyboard:
    keyboard: Keyboard = [
        [(f"⭐ {d.value.capitalize()}", tokens.edit_rating(review_id, d)) for d in RatingDimension],
        [("📝 Text", f"edit_text_{review_id}"), ("🙈 Anonymity", f"edit_anonymous_{review_id}")],
        [("💾 Save", f"save_review_{review_id}"), ("❌ Cancel", f"cancel_edit_{review_id}")],
    ]
    return keyboard


def edit_summary(draft: ReviewDraft) -> str:
    visibility = "anonymous" if draft.anonymous else "public"
    text = draft.text or "(no written review)"
    return (
        f"Editing your review of {draft.target_course_id} ({visibility})\n\n"
        f"{format_ratings(draft.ratings)}\n\n{text}"
    )


class EditingHandlers(Handlers):
    def actions(self):
        return {
            tokens.EditReview: self.edit_review,
            tokens.EditRating: self.edit_rating,
            tokens.SetRating: self.set_rating,
            tokens.EditText: self.edit_text,
            tokens.EditAnonymous: self.edit_anonymous,
            tokens.SaveReview: self.save,
            tokens.CancelEdit: self.cancel,
        }

    def text_handlers(self):
        return {ConversationState.EDITING_RECORD_TEXT: self.receive_text}

    async def _draft_for(self, subject_id: int, review_id: str) -> ReviewDraft:
        draft = await self.drafts.get(subject_id)
        if draft is None or draft.source_review_id != review_id:
            raise NotFound(f"No edit in progress for review {review_id}")
        return draft

    async def _menu(self, subject_id: int, current: StateSnapshot, draft: ReviewDraft) -> Reply:
        await self.transition(
            subject_id,
            current,
            ConversationState.EDITING_RECORD,
            {"review_id": draft.source_review_id},
        )
        return success(edit_summary(draft), edit_keyboard(draft.source_review_id), screen="edit_review")

    async def edit_review(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.EDITING_RECORD)
        review = await self.service.get_owned_review(subject_id, action.review_id)
        draft = await self.drafts.get(subject_id)
        if draft is not None and draft.committing:
            raise ValidationError("Your changes are being saved, please wait")
        # Back buttons land here; an edit already under way for this review is resumed.
        if draft is None or draft.source_review_id != review.review_id:
            draft = await self.drafts.begin(subject_id, review.course_id, source_review_id=review.review_id)
        return await self._menu(subject_id, current, draft)

    async def edit_rating(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.EDITING_RECORD)
        await self._draft_for(subject_id, action.review_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.EDITING_RECORD,
            {"review_id": action.review_id, "dimension": action.dimension.value},
        )
        keyboard: Keyboard = [
            [
                (str(value), tokens.set_rating(action.review_id, action.dimension, value))
                for value in range(MIN_RATING, MAX_RATING + 1)
            ],
            [("⬅️ Back", f"edit_review_{action.review_id}")],
        ]
        return success(
            f"New {action.dimension.value} rating:", keyboard, screen="edit_rating"
        )

    async def set_rating(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.EDITING_RECORD)
        await self._draft_for(subject_id, action.review_id)
        draft = await self.drafts.set_rating(subject_id, action.dimension, action.value)
        return await self._menu(subject_id, current, draft)

    async def edit_text(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.EDITING_RECORD_TEXT)
        await self._draft_for(subject_id, action.review_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.EDITING_RECORD_TEXT,
            {"review_id": action.review_id},
        )
        return success(
            f"Send the new text (up to {MAX_TEXT_LENGTH} characters), or {CLEAR_TEXT} to remove it.",
            [[("⬅️ Back", f"edit_review_{action.review_id}")]],
            screen="edit_text",
        )

    async def receive_text(self, subject_id: int, current: StateSnapshot, text: str) -> Reply:
        review_id = current.context.get("review_id")
        await self._draft_for(subject_id, review_id)
        new_text = None if text.strip() == CLEAR_TEXT else text
        draft = await self.drafts.set_text(subject_id, new_text)
        return await self._menu(subject_id, current, draft)

    async def edit_anonymous(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.EDITING_RECORD)
        await self._draft_for(subject_id, action.review_id)
        draft = await self.drafts.toggle_anonymous(subject_id)
        return await self._menu(subject_id, current, draft)

    async def save(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.VIEWING_OWN_RECORDS)
        await self._draft_for(subject_id, action.review_id)
        review = await self.drafts.commit(subject_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.VIEWING_OWN_RECORDS,
            {"review_id": review.review_id},
        )
        return success(
            "✅ Review updated.\n\n" + review_card(review),
            manage_keyboard(review.review_id),
            screen="manage_review",
        )

    async def cancel(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.VIEWING_OWN_RECORDS)
        if not await self.drafts.discard(subject_id):
            return notice("Your changes are being saved and can no longer be cancelled.")
        review = await self.service.get_owned_review(subject_id, action.review_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.VIEWING_OWN_RECORDS,
            {"review_id": review.review_id},
        )
        return notice("Changes discarded.\n\n" + review_card(review), manage_keyboard(review.review_id))
