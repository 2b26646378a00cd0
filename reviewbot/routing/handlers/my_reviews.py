"""The subject's own reviews: list, manage and delete."""

from __future__ import annotations

from reviewbot.conversation.states import ConversationState
from reviewbot.conversation.store import StateSnapshot
from reviewbot.reviews.catalog import REVIEWS_PER_PAGE, paginate
from reviewbot.reviews.models import Review
from reviewbot.routing import tokens
from reviewbot.routing.handlers.base import Handlers, format_ratings
from reviewbot.routing.replies import MAIN_MENU_BUTTON, Keyboard, Reply, notice, pager, success


def review_card(review: Review) -> str:
    visibility = "anonymous" if review.anonymous else "public"
    text = review.text or "(no written review)"
    return (
        f"Your review of {review.course_id} ({visibility})\n\n"
        f"{format_ratings(review.ratings)}\n\n{text}\n\n"
        f"👍 {review.upvotes}  👎 {review.downvotes}"
    )


def manage_keyboard(review_id: str) -> Keyboard:
    return [
        [("✏️ Edit", f"edit_review_{review_id}"), ("🗑 Delete", f"delete_review_{review_id}")],
        [("⬅️ My reviews", "my_reviews"), MAIN_MENU_BUTTON],
    ]


class MyReviewsHandlers(Handlers):
    def actions(self):
        return {
            tokens.MyReviews: self.list_reviews,
            tokens.ManageReview: self.manage,
            tokens.DeleteReview: self.delete_prompt,
            tokens.ConfirmDelete: self.confirm_delete,
        }

    async def list_reviews(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        reviews = await self.service.user_reviews(subject_id)
        page = paginate(reviews, action.page, REVIEWS_PER_PAGE)
        await self.transition(
            subject_id, current, ConversationState.VIEWING_OWN_RECORDS, {"page": page.page}
        )
        if not reviews:
            keyboard: Keyboard = [[("✍️ Post a review", "post_review")], [MAIN_MENU_BUTTON]]
            return notice("You haven't posted any reviews yet.", keyboard, screen="my_reviews")

        keyboard = []
        for review in page.items:
            course = self.catalog.get(review.course_id)
            label = f"{review.course_id}: {course.name}" if course else review.course_id
            keyboard.append([(label, f"manage_review_{review.review_id}")])
        nav = pager(page.page, page.total_pages, lambda p: f"my_reviews_page_{p}")
        if nav:
            keyboard.append(nav)
        keyboard.append([MAIN_MENU_BUTTON])
        return success(
            f"Your reviews (page {page.page}/{page.total_pages}):", keyboard, screen="my_reviews"
        )

    async def manage(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        review = await self.service.get_owned_review(subject_id, action.review_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.VIEWING_OWN_RECORDS,
            {"review_id": review.review_id},
        )
        return success(review_card(review), manage_keyboard(review.review_id), screen="manage_review")

    async def delete_prompt(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        review = await self.service.get_owned_review(subject_id, action.review_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.VIEWING_OWN_RECORDS,
            {"review_id": review.review_id},
        )
        keyboard: Keyboard = [
            [
                ("🗑 Yes, delete", f"confirm_delete_{review.review_id}"),
                ("⬅️ Keep it", f"manage_review_{review.review_id}"),
            ]
        ]
        return notice(
            f"Delete your review of {review.course_id}? This cannot be undone.",
            keyboard,
            screen="confirm_delete",
        )

    async def confirm_delete(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        self.ensure(subject_id, current, ConversationState.VIEWING_OWN_RECORDS)
        review = await self.service.delete_review(subject_id, action.review_id)
        await self.sessions.set_state(subject_id, ConversationState.VIEWING_OWN_RECORDS, {})
        keyboard: Keyboard = [[("⬅️ My reviews", "my_reviews"), MAIN_MENU_BUTTON]]
        return success(f"Your review of {review.course_id} was deleted.", keyboard, screen="deleted")
