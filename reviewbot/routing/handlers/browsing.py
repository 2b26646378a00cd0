"""Category, course and review listings, plus voting."""

from __future__ import annotations

from typing import List

from reviewbot.conversation.states import ConversationState
from reviewbot.conversation.store import StateSnapshot
from reviewbot.errors import NotFound
from reviewbot.reviews.catalog import (
    CATEGORIES_PER_PAGE,
    COURSES_PER_PAGE,
    NO_GRADING_SCHEME,
    REVIEWS_PER_PAGE,
    paginate,
)
from reviewbot.reviews.models import Course, VoteDirection, VoteOutcome
from reviewbot.routing import tokens
from reviewbot.routing.handlers.base import Handlers, format_ratings, stars
from reviewbot.routing.replies import MAIN_MENU_BUTTON, Button, Keyboard, Reply, notice, pager, success

VOTE_MESSAGES = {
    VoteOutcome.CREATED: "Thanks, your vote was recorded.",
    VoteOutcome.REPLACED: "Your vote was changed.",
    VoteOutcome.REMOVED: "Your vote was removed.",
}


def course_card(course: Course) -> str:
    averages = course.average_ratings
    lines = [
        f"📘 {course.course_id}: {course.name}",
        "",
        f"Overall: {stars(averages.get('overall'))}",
        f"Quality: {stars(averages.get('quality'))}",
        f"Difficulty: {stars(averages.get('difficulty'))}",
        f"Reviews: {course.review_count}",
    ]
    return "\n".join(lines)


class BrowsingHandlers(Handlers):
    def actions(self):
        return {
            tokens.BrowseCategories: self.browse_categories,
            tokens.SelectCategory: self.select_category,
            tokens.CoursesPage: self.courses_page,
            tokens.SelectCourse: self.select_course,
            tokens.CourseDetails: self.course_details,
            tokens.ShowReviews: self.show_reviews,
            tokens.CastVote: self.cast_vote,
        }

    async def browse_categories(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        page = paginate(self.catalog.categories(), action.page, CATEGORIES_PER_PAGE)
        await self.transition(
            subject_id, current, ConversationState.BROWSING, {"categories_page": page.page}
        )
        keyboard: Keyboard = [[(category, f"category_{category}")] for category in page.items]
        nav = pager(page.page, page.total_pages, tokens.categories_page)
        if nav:
            keyboard.append(nav)
        keyboard.append([MAIN_MENU_BUTTON])
        return success(
            f"Choose a category (page {page.page}/{page.total_pages}):",
            keyboard,
            screen="categories",
        )

    async def _course_list(
        self, subject_id: int, current: StateSnapshot, category: str, page_number: int, context
    ) -> Reply:
        if not self.catalog.is_category(category):
            raise NotFound(f"Category {category} not found")
        page = paginate(self.catalog.courses_in(category), page_number, COURSES_PER_PAGE)
        await self.transition(subject_id, current, ConversationState.BROWSING, context)
        keyboard: Keyboard = [
            [(f"{course.course_id}: {course.name}", f"course_{course.course_id}")]
            for course in page.items
        ]
        nav = pager(page.page, page.total_pages, lambda p: tokens.courses_page(category, p))
        if nav:
            keyboard.append(nav)
        keyboard.append([("⬅️ Categories", "back_categories"), MAIN_MENU_BUTTON])
        if not page.items:
            return notice(f"No courses listed under {category} yet.", keyboard, screen="courses")
        return success(
            f"{category} courses (page {page.page}/{page.total_pages}):", keyboard, screen="courses"
        )

    async def select_category(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        return await self._course_list(
            subject_id, current, action.category, 1, {"category": action.category}
        )

    async def courses_page(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        return await self._course_list(
            subject_id,
            current,
            action.category,
            action.page,
            {"category": action.category, "page": action.page},
        )

    async def select_course(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        course = self.service.get_course(action.course_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.VIEWING_RECORD,
            {"course_id": course.course_id, "category": course.category},
        )
        keyboard: Keyboard = [
            [("📖 Reviews", f"reviews_{course.course_id}"), ("ℹ️ Details", f"course_details_{course.course_id}")],
            [("✍️ Write a review", f"write_review_{course.course_id}")],
            [("⬅️ Back", "back_to_category"), MAIN_MENU_BUTTON],
        ]
        return success(course_card(course), keyboard, screen="course")

    async def course_details(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        course = self.service.get_course(action.course_id)
        await self.transition(
            subject_id,
            current,
            ConversationState.VIEWING_RECORD,
            {"course_id": course.course_id, "category": course.category},
        )
        grading = course.grading_scheme.description if course.grading_scheme else NO_GRADING_SCHEME
        text = (
            f"{course_card(course)}\n\n{course.description or 'No description available.'}"
            f"\n\n💯 Grading scheme\n{grading}"
        )
        keyboard: Keyboard = [
            [("📖 Reviews", f"reviews_{course.course_id}")],
            [("⬅️ Back", "back_course"), MAIN_MENU_BUTTON],
        ]
        return success(text, keyboard, screen="course_details")

    async def show_reviews(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        course = self.service.get_course(action.course_id)
        reviews = await self.service.reviews_for_course(course.course_id)
        page = paginate(reviews, action.page, REVIEWS_PER_PAGE)
        await self.transition(
            subject_id,
            current,
            ConversationState.VIEWING_RECORD,
            {"course_id": course.course_id, "category": course.category, "reviews_page": page.page},
        )

        keyboard: Keyboard = []
        blocks: List[str] = [f"Reviews for {course.course_id}: {course.name}"]
        for review in page.items:
            author = await self.service.author_name(review)
            block = f"👤 {author}\n{format_ratings(review.ratings)}"
            if review.text:
                block += f"\n“{review.text}”"
            blocks.append(block)
            row: List[Button] = [
                (f"👍 {review.upvotes}", tokens.vote(review.review_id, VoteDirection.UP)),
                (f"👎 {review.downvotes}", tokens.vote(review.review_id, VoteDirection.DOWN)),
            ]
            keyboard.append(row)

        nav = pager(page.page, page.total_pages, lambda p: tokens.reviews_page(course.course_id, p))
        if nav:
            keyboard.append(nav)
        keyboard.append([("⬅️ Back", "back_course"), MAIN_MENU_BUTTON])

        if not page.items:
            keyboard.insert(0, [("✍️ Be the first to review", f"write_review_{course.course_id}")])
            return notice(f"No reviews for {course.course_id} yet.", keyboard, screen="reviews")
        return success("\n\n".join(blocks), keyboard, screen="reviews")

    async def cast_vote(self, subject_id: int, current: StateSnapshot, action) -> Reply:
        outcome = await self.service.cast_vote(subject_id, action.review_id, action.direction)
        return notice(VOTE_MESSAGES[outcome], screen="vote")
