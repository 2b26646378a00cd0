"""Durable record store for reviews, votes and profiles."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import WatchError

from reviewbot import redis_client
from reviewbot.errors import DuplicateSubmission, NotFound
from reviewbot.redis_client import store_retry
from reviewbot.reviews.models import Review, UserProfile, Vote, VoteDirection, VoteOutcome

logger = logging.getLogger(__name__)

# Edits a review in place. May run more than once under contention.
ReviewChanges = Callable[[Review], None]


class ReviewRepository(Protocol):
    async def get_review(self, review_id: str) -> Optional[Review]:
        """Return the review, including soft-deleted ones."""

    async def create_review(self, review: Review) -> Review:
        """Insert a new review; raises DuplicateSubmission if the subject already has one for the course."""

    async def update_review(self, review_id: str, changes: ReviewChanges) -> Review:
        """Apply ``changes`` to the current live row; raises NotFound if there is none."""

    async def soft_delete_review(self, review_id: str, now: float) -> Review:
        """Flag a review as deleted and drop its votes."""

    async def find_user_review_for_course(self, subject_id: int, course_id: str) -> Optional[Review]:
        """The subject's live review for a course, if any."""

    async def reviews_by_subject(self, subject_id: int) -> List[Review]:
        """All live reviews written by the subject."""

    async def reviews_for_course(self, course_id: str) -> List[Review]:
        """All live reviews for a course."""

    async def cast_vote(
        self, voter_id: int, review_id: str, direction: VoteDirection, now: float
    ) -> VoteOutcome:
        """Create, replace or toggle off the voter's vote on a review."""

    async def get_vote(self, voter_id: int, review_id: str) -> Optional[VoteDirection]:
        """The voter's current vote direction."""

    async def get_profile(self, subject_id: int) -> Optional[UserProfile]:
        """Public identity shown on non-anonymous reviews."""

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        """Store the subject's public identity."""


def apply_vote(
    review: Review, existing: Optional[VoteDirection], direction: VoteDirection
) -> VoteOutcome:
    """Resolve a cast against the current vote and adjust the counts on ``review``."""
    if existing is None:
        outcome = VoteOutcome.CREATED
    elif existing is direction:
        outcome = VoteOutcome.REMOVED
    else:
        outcome = VoteOutcome.REPLACED

    if existing is VoteDirection.UP:
        review.upvotes = max(0, review.upvotes - 1)
    elif existing is VoteDirection.DOWN:
        review.downvotes = max(0, review.downvotes - 1)

    if outcome is not VoteOutcome.REMOVED:
        if direction is VoteDirection.UP:
            review.upvotes += 1
        else:
            review.downvotes += 1
    return outcome


class RedisReviewRepository:
    """
    Review records in the shared store.

    Keys:
        review:{review_id}                 JSON review
        claim:{subject_id}:{course_id}     review id; SET NX enforces one review per course
        course_reviews:{course_id}         set of review ids
        subject_reviews:{subject_id}       set of review ids
        vote:{review_id}:{voter_id}        JSON vote
        profile:{subject_id}               JSON profile
    """

    def __init__(self, client: redis.Redis):
        self._redis = client

    @staticmethod
    def _review_key(review_id: str) -> str:
        return f"review:{review_id}"

    @staticmethod
    def _claim_key(subject_id: int, course_id: str) -> str:
        return f"claim:{subject_id}:{course_id}"

    @staticmethod
    def _vote_key(review_id: str, voter_id: int) -> str:
        return f"vote:{review_id}:{voter_id}"

    async def get_review(self, review_id: str) -> Optional[Review]:
        data = await redis_client.get_json(self._redis, self._review_key(review_id))
        return Review.from_dict(data) if data else None

    @store_retry
    async def _write_review(self, review: Review) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._review_key(review.review_id), json.dumps(review.to_dict(), ensure_ascii=False))
            pipe.sadd(f"course_reviews:{review.course_id}", review.review_id)
            pipe.sadd(f"subject_reviews:{review.subject_id}", review.review_id)
            await pipe.execute()

    async def create_review(self, review: Review) -> Review:
        claim = self._claim_key(review.subject_id, review.course_id)
        if not await redis_client.create_json(self._redis, claim, review.review_id):
            existing_id = await redis_client.get_json(self._redis, claim)
            raise DuplicateSubmission(review.subject_id, review.course_id, str(existing_id))
        try:
            await self._write_review(review)
        except Exception:
            await redis_client.delete_key(self._redis, claim)
            raise
        return review

    async def update_review(self, review_id: str, changes: ReviewChanges) -> Review:
        def mutate(current):
            if current is None:
                raise NotFound(f"Review {review_id} not found")
            review = Review.from_dict(current)
            if review.is_deleted:
                raise NotFound(f"Review {review_id} not found")
            changes(review)
            return review.to_dict()

        data = await redis_client.update_json(self._redis, self._review_key(review_id), mutate)
        return Review.from_dict(data)

    async def soft_delete_review(self, review_id: str, now: float) -> Review:
        def mark_deleted(review: Review) -> None:
            review.is_deleted = True
            review.upvotes = 0
            review.downvotes = 0
            review.updated_at = now

        # Votes cast before this point conflict on the review key and retry
        # against the deleted row, which cast_vote rejects.
        review = await self.update_review(review_id, mark_deleted)
        await redis_client.delete_key(self._redis, self._claim_key(review.subject_id, review.course_id))
        async for key in self._redis.scan_iter(match=f"vote:{review_id}:*"):
            await redis_client.delete_key(self._redis, key)
        return review

    async def _load_many(self, index_key: str) -> List[Review]:
        review_ids = await self._members(index_key)
        reviews = []
        for review_id in review_ids:
            review = await self.get_review(review_id)
            if review and not review.is_deleted:
                reviews.append(review)
        return reviews

    @store_retry
    async def _members(self, index_key: str) -> List[str]:
        return sorted(await self._redis.smembers(index_key))

    async def find_user_review_for_course(self, subject_id: int, course_id: str) -> Optional[Review]:
        review_id = await redis_client.get_json(self._redis, self._claim_key(subject_id, course_id))
        if review_id is None:
            return None
        review = await self.get_review(str(review_id))
        return review if review and not review.is_deleted else None

    async def reviews_by_subject(self, subject_id: int) -> List[Review]:
        return await self._load_many(f"subject_reviews:{subject_id}")

    async def reviews_for_course(self, course_id: str) -> List[Review]:
        return await self._load_many(f"course_reviews:{course_id}")

    @store_retry
    async def cast_vote(
        self, voter_id: int, review_id: str, direction: VoteDirection, now: float
    ) -> VoteOutcome:
        vote_key = self._vote_key(review_id, voter_id)
        review_key = self._review_key(review_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(vote_key, review_key)
                    raw_review = await pipe.get(review_key)
                    if raw_review is None:
                        raise NotFound(f"Review {review_id} not found")
                    review = Review.from_dict(json.loads(raw_review))
                    if review.is_deleted:
                        raise NotFound(f"Review {review_id} not found")
                    raw_vote = await pipe.get(vote_key)
                    existing = Vote.from_dict(json.loads(raw_vote)) if raw_vote else None
                    outcome = apply_vote(review, existing.direction if existing else None, direction)

                    pipe.multi()
                    if outcome is VoteOutcome.REMOVED:
                        pipe.delete(vote_key)
                    else:
                        vote = Vote(
                            voter_id=voter_id,
                            review_id=review_id,
                            direction=direction,
                            created_at=existing.created_at if existing else now,
                        )
                        pipe.set(vote_key, json.dumps(vote.to_dict()))
                    pipe.set(review_key, json.dumps(review.to_dict(), ensure_ascii=False))
                    await pipe.execute()
                    return outcome
                except WatchError:
                    logger.debug(f"Concurrent vote on {review_id}, retrying")
                    continue

    async def get_vote(self, voter_id: int, review_id: str) -> Optional[VoteDirection]:
        data = await redis_client.get_json(self._redis, self._vote_key(review_id, voter_id))
        return Vote.from_dict(data).direction if data else None

    async def get_profile(self, subject_id: int) -> Optional[UserProfile]:
        data = await redis_client.get_json(self._redis, f"profile:{subject_id}")
        return UserProfile.from_dict(data) if data else None

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        await redis_client.set_json(self._redis, f"profile:{profile.subject_id}", profile.to_dict())
        return profile


class InMemoryReviewRepository:
    """
    In-memory review store for testing/development.

    Same interface as RedisReviewRepository; a lock stands in for the
    conditional writes.
    """

    def __init__(self) -> None:
        self._reviews: Dict[str, Review] = {}
        self._claims: Dict[Tuple[int, str], str] = {}
        self._votes: Dict[Tuple[str, int], Vote] = {}
        self._profiles: Dict[int, UserProfile] = {}
        self._lock = asyncio.Lock()

    async def get_review(self, review_id: str) -> Optional[Review]:
        review = self._reviews.get(review_id)
        return Review.from_dict(review.to_dict()) if review else None

    async def create_review(self, review: Review) -> Review:
        async with self._lock:
            claim = (review.subject_id, review.course_id)
            if claim in self._claims:
                raise DuplicateSubmission(review.subject_id, review.course_id, self._claims[claim])
            self._claims[claim] = review.review_id
            self._reviews[review.review_id] = Review.from_dict(review.to_dict())
        return review

    def _live(self, review_id: str) -> Review:
        review = self._reviews.get(review_id)
        if review is None or review.is_deleted:
            raise NotFound(f"Review {review_id} not found")
        return review

    async def update_review(self, review_id: str, changes: ReviewChanges) -> Review:
        async with self._lock:
            review = self._live(review_id)
            changes(review)
            return Review.from_dict(review.to_dict())

    async def soft_delete_review(self, review_id: str, now: float) -> Review:
        async with self._lock:
            review = self._live(review_id)
            review.is_deleted = True
            review.upvotes = 0
            review.downvotes = 0
            review.updated_at = now
            self._claims.pop((review.subject_id, review.course_id), None)
            for key in [k for k in self._votes if k[0] == review_id]:
                del self._votes[key]
            return Review.from_dict(review.to_dict())

    async def find_user_review_for_course(self, subject_id: int, course_id: str) -> Optional[Review]:
        review_id = self._claims.get((subject_id, course_id))
        if review_id is None:
            return None
        return await self.get_review(review_id)

    async def reviews_by_subject(self, subject_id: int) -> List[Review]:
        return [
            Review.from_dict(r.to_dict())
            for r in self._reviews.values()
            if r.subject_id == subject_id and not r.is_deleted
        ]

    async def reviews_for_course(self, course_id: str) -> List[Review]:
        return [
            Review.from_dict(r.to_dict())
            for r in self._reviews.values()
            if r.course_id == course_id and not r.is_deleted
        ]

    async def cast_vote(
        self, voter_id: int, review_id: str, direction: VoteDirection, now: float
    ) -> VoteOutcome:
        async with self._lock:
            review = self._live(review_id)
            existing = self._votes.get((review_id, voter_id))
            outcome = apply_vote(review, existing.direction if existing else None, direction)
            if outcome is VoteOutcome.REMOVED:
                del self._votes[(review_id, voter_id)]
            else:
                self._votes[(review_id, voter_id)] = Vote(
                    voter_id=voter_id,
                    review_id=review_id,
                    direction=direction,
                    created_at=existing.created_at if existing else now,
                )
            return outcome

    async def get_vote(self, voter_id: int, review_id: str) -> Optional[VoteDirection]:
        vote = self._votes.get((review_id, voter_id))
        return vote.direction if vote else None

    async def get_profile(self, subject_id: int) -> Optional[UserProfile]:
        return self._profiles.get(subject_id)

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        self._profiles[profile.subject_id] = profile
        return profile
