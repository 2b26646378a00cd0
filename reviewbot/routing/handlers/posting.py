"""
New review flow.

post_review → category → course → overall/quality/difficulty → optional text
→ anonymous or public → (profile name and tag when public and unknown) →
confirm. The DRAFTING context carries ``step`` so free text is only taken
when the subject was asked for it. From the confirmation screen the draft can
be revised; a ``then`` entry in the context says where to return afterwards.
"""

from __future__ import annotations

from typing import Optional

from reviewbot.conversation.drafts import ReviewDraft
from reviewbot.conversation.states import ConversationState
from reviewbot.conversation.store import StateSnapshot
from reviewbot.errors import DuplicateSubmission, NotFound, ValidationError
from reviewbot.reviews.models import MAX_RATING, MAX_TEXT_LENGTH, MIN_RATING, RatingDimension
from reviewbot.reviews.service import validate_profile_name
from reviewbot.routing import tokens
from reviewbot.routing.handlers.base import Handlers, format_ratings
from reviewbot.routing.replies import (
    MAIN_MENU_BUTTON,
    Keyboard,
    Reply,
    back_to_menu,
    main_menu_keyboard,
    notice,
    success,
    unrecognized_input,
)

STEP_CHOOSE_CATEGORY = "choose_category"
STEP_CHOOSE_COURSE = "choose_course"
STEP_RATING = "rating"
STEP_TEXT_CHOICE = "text_choice"
STEP_AWAITING_TEXT = "awaiting_text"
STEP_ANONYMITY = "anonymity"
STEP_CONFIRM = "confirm"
STEP_EDIT_MENU = "edit_menu"

RATING_PROMPTS = {
    RatingDimension.OVERALL: "How would you rate the course overall?",
    RatingDimension.QUALITY: "How good was the teaching quality?",
    RatingDimension.DIFFICULTY: "How difficult was the course?",
}


def rating_keyboard(dimension: RatingDimension) -> Keyboard:
    return [
        [(str(value), tokens.rating(dimension, value)) for value in range(MIN_RATING, MAX_RATING + 1)],
        [("❌ Cancel", "cancel_review")],
    ]


def following_dimension(dimension: RatingDimension) -> Optional[RatingDimension]:
    order = list(RatingDimension)
    index = order.index(dimension) + 1
    return order[index] if index < len(order) else None


def next_missing_dimension(draft: ReviewDraft) -> Optional[RatingDimension]:
    for dimension in RatingDimension:
        if draft.ratings.get(dimension) is None:
            return dimension
    return None


def draft_summary(draft: ReviewDraft, author: str) -> str:
    text = draft.text or "(no written review)"
    return (
        f"Please confirm your review of {draft.target_course_id}:\n\n"
        f"{format_ratings(draft.ratings)}\n\n{text}\n\nPosted as: {author}"
    )


class PostingHandlers(Handlers):
    def actions(self):
        return {
            tokens.PostReview: self.post_review,
            tokens.ReviewCategory: self.review_category,
            tokens.ReviewCourse: self.start_draft,
            tokens.WriteReview: self.start_draft,
            tokens.Rate: self.rate,
            tokens.AddText: self.add_text,
            tokens.SkipText: self.skip_text,
            tokens.ChooseAnonymous: self.choose_anonymous,
            tokens.ConfirmReview: self.confirm,
            tokens.CancelReview: self.cancel,
            tokens.BackToRating: self.back_to_rating,
            tokens.BackToText: self.back_to_text,
            tokens.EditCurrentReview: self.edit_current_review,
            tokens.EditDraftText: self.edit_draft_text,
            tokens.RemoveDraftText: self.remove_draft_text,
            tokens.EditAnonymity: self.edit_anonymity,
        }

    def text_handlers(self):
        return {
            ConversationState.DRAFTING: self.draft_text,
            ConversationState.COLLECTING_PROFILE_NAME: self.profile_name,
            ConversationState.COLLECTING_PROFILE_TAG: self.profile_tag,
        }

    async def _require_draft(self, subject_id: int) -> ReviewDraft:
        draft = await self.drafts.get(subject_id)
        if draft is None or draft.is_edit:
            raise NotFound("No review draft in progress")
        return draft

    async def post_review(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        await self.transition(
            subject_id, current, ConversationState.DRAFTING, {"step": STEP_CHOOSE_CATEGORY}
        )
        categories = self.catalog.categories()
        keyboard: Keyboard = [
            [(category, f"review_category_{category}") for category in categories[i : i + 3]]
            for i in range(0, len(categories), 3)
        ]
        keyboard.append([MAIN_MENU_BUTTON])
        return success("Which category is the course in?", keyboard, screen="review_categories")

    async def review_category(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        if not self.catalog.is_category(action.category):
            raise NotFound(f"Category {action.category} not found")
        courses = self.catalog.courses_in(action.category)
        await self.transition(
            subject_id,
            current,
            ConversationState.DRAFTING,
            {"step": STEP_CHOOSE_COURSE, "category": action.category},
        )
        keyboard: Keyboard = [
            [(f"{course.course_id}: {course.name}", f"review_course_{course.course_id}")]
            for course in courses
        ]
        keyboard.append([("⬅️ Categories", "post_review"), MAIN_MENU_BUTTON])
        if not courses:
            return notice(f"No courses listed under {action.category} yet.", keyboard)
        return success("Which course would you like to review?", keyboard, screen="review_courses")

    async def start_draft(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        course = self.service.get_course(action.course_id)
        existing = await self.service.can_review(subject_id, course.course_id)
        if existing is not None:
            raise DuplicateSubmission(subject_id, course.course_id, existing.review_id)

        await self.transition(
            subject_id,
            current,
            ConversationState.DRAFTING,
            {"step": STEP_RATING, "course_id": course.course_id, "dimension": RatingDimension.OVERALL.value},
        )
        await self.drafts.begin(subject_id, course.course_id)
        return success(
            f"Reviewing {course.course_id}: {course.name}\n\n{RATING_PROMPTS[RatingDimension.OVERALL]}",
            rating_keyboard(RatingDimension.OVERALL),
            screen="rating",
        )

    async def _ask_rating(
        self,
        subject_id: int,
        draft: ReviewDraft,
        dimension: RatingDimension,
        then: Optional[str] = None,
    ) -> Reply:
        context = {"step": STEP_RATING, "course_id": draft.target_course_id, "dimension": dimension.value}
        if then:
            context["then"] = then
        await self.sessions.set_state(subject_id, ConversationState.DRAFTING, context)
        prompt = RATING_PROMPTS[dimension]
        value = draft.ratings.get(dimension)
        if value is not None:
            prompt += f" (currently {value})"
        return success(prompt, rating_keyboard(dimension), screen="rating")

    async def rate(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        await self._require_draft(subject_id)
        draft = await self.drafts.set_rating(subject_id, action.dimension, action.value)

        # A revisit walks every dimension in order, then returns to where it started.
        then = current.context.get("then")
        if then:
            following = following_dimension(action.dimension)
            if following is not None:
                return await self._ask_rating(subject_id, draft, following, then)
            if then == STEP_CONFIRM:
                return await self._confirm_prompt(subject_id, draft)
            return await self._ask_text_choice(subject_id, draft)

        missing = next_missing_dimension(draft)
        if missing is not None:
            return await self._ask_rating(subject_id, draft, missing)
        return await self._ask_text_choice(subject_id, draft)

    async def back_to_rating(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        draft = await self._require_draft(subject_id)
        then = STEP_CONFIRM if current.context.get("step") == STEP_EDIT_MENU else STEP_TEXT_CHOICE
        return await self._ask_rating(subject_id, draft, RatingDimension.OVERALL, then)

    async def _ask_text_choice(self, subject_id: int, draft: ReviewDraft) -> Reply:
        await self.sessions.set_state(
            subject_id,
            ConversationState.DRAFTING,
            {"step": STEP_TEXT_CHOICE, "course_id": draft.target_course_id},
        )
        keyboard: Keyboard = [
            [("📝 Add text", "add_text_review"), ("⏭ Skip", "skip_text_review")],
            [("⬅️ Back", "back_to_rating"), ("❌ Cancel", "cancel_review")],
        ]
        return success("Would you like to add a written review?", keyboard, screen="text_choice")

    async def back_to_text(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        draft = await self._require_draft(subject_id)
        return await self._ask_text_choice(subject_id, draft)

    async def add_text(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        draft = await self._require_draft(subject_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.DRAFTING,
            {"step": STEP_AWAITING_TEXT, "course_id": draft.target_course_id},
        )
        return success(
            f"Send your review as a message (up to {MAX_TEXT_LENGTH} characters).",
            [[("⬅️ Back", "back_to_text"), ("❌ Cancel", "cancel_review")]],
            screen="awaiting_text",
        )

    async def skip_text(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        await self._require_draft(subject_id)
        draft = await self.drafts.set_text(subject_id, None)
        return await self._ask_anonymity(subject_id, draft)

    async def draft_text(self, subject_id: int, current: StateSnapshot, text: str) -> Reply:
        if current.context.get("step") != STEP_AWAITING_TEXT:
            return unrecognized_input()
        await self._require_draft(subject_id)
        draft = await self.drafts.set_text(subject_id, text)
        if current.context.get("then") == STEP_CONFIRM:
            return await self._confirm_prompt(subject_id, draft)
        return await self._ask_anonymity(subject_id, draft)

    async def _ask_anonymity(self, subject_id: int, draft: ReviewDraft, back: str = "back_to_text") -> Reply:
        await self.sessions.set_state(
            subject_id,
            ConversationState.DRAFTING,
            {"step": STEP_ANONYMITY, "course_id": draft.target_course_id},
        )
        keyboard: Keyboard = [
            [("🙈 Anonymous", "review_anonymous_yes"), ("🙋 Show my name", "review_anonymous_no")],
            [("⬅️ Back", back), ("❌ Cancel", "cancel_review")],
        ]
        return success("Post anonymously?", keyboard, screen="anonymity")

    async def choose_anonymous(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        await self._require_draft(subject_id)
        draft = await self.drafts.set_anonymous(subject_id, action.anonymous)

        if not draft.anonymous:
            profile = await self.service.get_profile(subject_id)
            if profile is None or not profile.is_complete:
                await self.transition(
                    subject_id,
                    current,
                    ConversationState.COLLECTING_PROFILE_NAME,
                    {"course_id": draft.target_course_id},
                )
                return success(
                    "What name should appear on your reviews? (2-40 characters)",
                    [[("❌ Cancel", "cancel_review")]],
                    screen="profile_name",
                )
        return await self._confirm_prompt(subject_id, draft)

    async def profile_name(self, subject_id: int, current: StateSnapshot, text: str) -> Reply:
        name = validate_profile_name(text)
        context = dict(current.context)
        context["profile_name"] = name
        await self.transition(subject_id, current, ConversationState.COLLECTING_PROFILE_TAG, context)
        return success(
            f"Thanks, {name}. Now send a 4-character tag (e.g. your batch, like Y22A).",
            [[("❌ Cancel", "cancel_review")]],
            screen="profile_tag",
        )

    async def profile_tag(self, subject_id: int, current: StateSnapshot, text: str) -> Reply:
        name = current.context.get("profile_name")
        if not name:
            raise NotFound("Profile name missing from session")
        await self.service.save_profile(subject_id, name, text)
        draft = await self._require_draft(subject_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.DRAFTING,
            {"step": STEP_CONFIRM, "course_id": draft.target_course_id},
        )
        return await self._confirm_prompt(subject_id, draft)

    async def _confirm_prompt(self, subject_id: int, draft: ReviewDraft) -> Reply:
        await self.sessions.set_state(
            subject_id,
            ConversationState.DRAFTING,
            {"step": STEP_CONFIRM, "course_id": draft.target_course_id},
        )
        if draft.anonymous:
            author = "Anonymous"
        else:
            profile = await self.service.get_profile(subject_id)
            author = profile.display_name() if profile else "Anonymous"
        keyboard: Keyboard = [
            [("✅ Post", "confirm_review"), ("✏️ Edit", "edit_current_review")],
            [("❌ Cancel", "cancel_review")],
        ]
        return success(draft_summary(draft, author), keyboard, screen="confirm")

    async def edit_current_review(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        draft = await self._require_draft(subject_id)
        if not draft.ratings.is_complete():
            raise ValidationError("Finish rating the course first")
        await self.sessions.set_state(
            subject_id,
            ConversationState.DRAFTING,
            {"step": STEP_EDIT_MENU, "course_id": draft.target_course_id},
        )
        visibility = "yes" if draft.anonymous else "no"
        keyboard: Keyboard = [
            [("⭐ Ratings", "back_to_rating"), ("📝 Text", "edit_review_text")],
            [("🙈 Visibility", "edit_anonymity")],
            [("⬅️ Back to confirmation", f"review_anonymous_{visibility}")],
            [("❌ Cancel", "cancel_review")],
        ]
        return success("What would you like to change?", keyboard, screen="edit_draft")

    async def edit_draft_text(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        draft = await self._require_draft(subject_id)
        await self.sessions.set_state(
            subject_id,
            ConversationState.DRAFTING,
            {"step": STEP_AWAITING_TEXT, "course_id": draft.target_course_id, "then": STEP_CONFIRM},
        )
        keyboard: Keyboard = [
            [("🗑️ Remove text", "remove_review_text")],
            [("⬅️ Back", "edit_current_review"), ("❌ Cancel", "cancel_review")],
        ]
        return success(
            f"Current text:\n\n{draft.text or '(no written review)'}\n\n"
            f"Send the new text (up to {MAX_TEXT_LENGTH} characters).",
            keyboard,
            screen="edit_draft_text",
        )

    async def remove_draft_text(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        await self._require_draft(subject_id)
        draft = await self.drafts.set_text(subject_id, None)
        return await self._confirm_prompt(subject_id, draft)

    async def edit_anonymity(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        draft = await self._require_draft(subject_id)
        return await self._ask_anonymity(subject_id, draft, back="edit_current_review")

    async def confirm(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.DRAFTING)
        await self._require_draft(subject_id)
        review = await self.drafts.commit(subject_id)
        await self.sessions.set_state(subject_id, ConversationState.ROOT)
        course = self.service.get_course(review.course_id)
        # Every button here has to work from ROOT.
        keyboard: Keyboard = [
            [(f"📚 More {course.category} courses", f"category_{course.category}")]
        ] + main_menu_keyboard()
        return success("🎉 Your review has been posted. Thank you!", keyboard, screen="posted")

    async def cancel(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        if not await self.drafts.discard(subject_id):
            return notice("Your review is being saved and can no longer be cancelled.")
        await self.sessions.set_state(subject_id, ConversationState.ROOT)
        return notice("Review cancelled.", back_to_menu(), screen="cancelled")

