"""Business rules over the review repository."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from reviewbot.errors import Conflict, DuplicateSubmission, NotFound, ValidationError
from reviewbot.reviews.catalog import CourseCatalog
from reviewbot.reviews.models import (
    MAX_RATING,
    MAX_TEXT_LENGTH,
    MIN_RATING,
    Course,
    RatingDimension,
    Ratings,
    Review,
    UserProfile,
    VoteDirection,
    VoteOutcome,
)
from reviewbot.reviews.repository import ReviewRepository

logger = logging.getLogger(__name__)

PROFILE_NAME_MIN = 2
PROFILE_NAME_MAX = 40
PROFILE_TAG_LENGTH = 4


def validate_rating(dimension: RatingDimension, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{dimension.value} rating must be a whole number")
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError(
            f"{dimension.value} rating must be between {MIN_RATING} and {MAX_RATING}"
        )
    return value


def validate_text(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"Review text must be at most {MAX_TEXT_LENGTH} characters")
    return text


def validate_ratings(ratings: Ratings) -> None:
    for dimension in RatingDimension:
        value = ratings.get(dimension)
        if value is None:
            raise ValidationError(f"{dimension.value} rating is missing")
        validate_rating(dimension, value)


def validate_profile_name(name: str) -> str:
    name = (name or "").strip()
    if not PROFILE_NAME_MIN <= len(name) <= PROFILE_NAME_MAX:
        raise ValidationError(
            f"Name must be between {PROFILE_NAME_MIN} and {PROFILE_NAME_MAX} characters"
        )
    return name


def validate_profile_tag(tag: str) -> str:
    tag = (tag or "").strip().upper()
    if len(tag) != PROFILE_TAG_LENGTH:
        raise ValidationError(f"Tag must be exactly {PROFILE_TAG_LENGTH} characters")
    return tag


class ReviewService:
    """
    Create, edit, delete and vote on reviews.

    Ownership violations surface as NotFound so a subject cannot discover other
    subjects' records; voting on your own review is a Conflict.
    """

    def __init__(
        self,
        repository: ReviewRepository,
        catalog: CourseCatalog,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self._clock = clock

    def get_course(self, course_id: str) -> Course:
        course = self.catalog.get(course_id)
        if course is None:
            raise NotFound(f"Course {course_id} not found")
        return course

    async def get_review(self, review_id: str) -> Review:
        review = await self.repository.get_review(review_id)
        if review is None or review.is_deleted:
            raise NotFound(f"Review {review_id} not found")
        return review

    async def get_owned_review(self, subject_id: int, review_id: str) -> Review:
        review = await self.get_review(review_id)
        if review.subject_id != subject_id:
            raise NotFound(f"Review {review_id} not found")
        return review

    async def can_review(self, subject_id: int, course_id: str) -> Optional[Review]:
        """Return the subject's existing review for the course, or None if they may post."""
        return await self.repository.find_user_review_for_course(subject_id, course_id)

    async def create_review(
        self,
        subject_id: int,
        course_id: str,
        ratings: Ratings,
        text: Optional[str] = None,
        anonymous: bool = False,
    ) -> Review:
        self.get_course(course_id)
        validate_ratings(ratings)
        text = validate_text(text)

        existing = await self.repository.find_user_review_for_course(subject_id, course_id)
        if existing is not None:
            raise DuplicateSubmission(subject_id, course_id, existing.review_id)

        now = self._clock()
        review = Review(
            review_id=uuid.uuid4().hex[:12],
            course_id=course_id,
            subject_id=subject_id,
            ratings=Ratings.from_dict(ratings.to_dict()),
            text=text,
            anonymous=anonymous,
            created_at=now,
            updated_at=now,
        )
        await self.repository.create_review(review)
        await self.refresh_course_stats(course_id)
        logger.info(
            "review_created",
            extra={"subject_id": subject_id, "course_id": course_id, "review_id": review.review_id},
        )
        return review

    async def update_review(
        self,
        subject_id: int,
        review_id: str,
        ratings: Ratings,
        text: Optional[str] = None,
        anonymous: bool = False,
    ) -> Review:
        await self.get_owned_review(subject_id, review_id)
        validate_ratings(ratings)
        text = validate_text(text)
        now = self._clock()

        # Vote counts belong to whatever row is current when the write lands.
        def apply_edit(review: Review) -> None:
            review.ratings = Ratings.from_dict(ratings.to_dict())
            review.text = text
            review.anonymous = anonymous
            review.updated_at = now

        review = await self.repository.update_review(review_id, apply_edit)
        await self.refresh_course_stats(review.course_id)
        logger.info("review_updated", extra={"subject_id": subject_id, "review_id": review_id})
        return review

    async def delete_review(self, subject_id: int, review_id: str) -> Review:
        review = await self.get_owned_review(subject_id, review_id)
        deleted = await self.repository.soft_delete_review(review.review_id, self._clock())
        await self.refresh_course_stats(review.course_id)
        logger.info("review_deleted", extra={"subject_id": subject_id, "review_id": review_id})
        return deleted

    async def cast_vote(
        self, voter_id: int, review_id: str, direction: VoteDirection
    ) -> VoteOutcome:
        review = await self.get_review(review_id)
        if review.subject_id == voter_id:
            raise Conflict("You cannot vote on your own review")
        outcome = await self.repository.cast_vote(voter_id, review_id, direction, self._clock())
        logger.info(
            "vote_cast",
            extra={"subject_id": voter_id, "review_id": review_id, "outcome": outcome.value},
        )
        return outcome

    async def get_vote(self, voter_id: int, review_id: str) -> Optional[VoteDirection]:
        return await self.repository.get_vote(voter_id, review_id)

    async def reviews_for_course(self, course_id: str) -> List[Review]:
        """Most helpful first, newest first among equals."""
        reviews = await self.repository.reviews_for_course(course_id)
        return sorted(reviews, key=lambda r: (-r.net_votes, -r.created_at))

    async def user_reviews(self, subject_id: int) -> List[Review]:
        reviews = await self.repository.reviews_by_subject(subject_id)
        return sorted(reviews, key=lambda r: -r.created_at)

    async def get_profile(self, subject_id: int) -> Optional[UserProfile]:
        return await self.repository.get_profile(subject_id)

    async def save_profile(self, subject_id: int, name: str, tag: str) -> UserProfile:
        profile = UserProfile(
            subject_id=subject_id,
            name=validate_profile_name(name),
            tag=validate_profile_tag(tag),
        )
        return await self.repository.save_profile(profile)

    async def author_name(self, review: Review) -> str:
        if review.anonymous:
            return "Anonymous"
        profile = await self.repository.get_profile(review.subject_id)
        return profile.display_name() if profile else "Anonymous"

    async def refresh_course_stats(self, course_id: str) -> None:
        reviews = await self.repository.reviews_for_course(course_id)
        averages: Dict[str, float] = {}
        for dimension in RatingDimension:
            values = [r.ratings.get(dimension) for r in reviews if r.ratings.get(dimension)]
            averages[dimension.value] = round(sum(values) / len(values), 2) if values else 0.0
        self.catalog.update_stats(course_id, averages, len(reviews))
