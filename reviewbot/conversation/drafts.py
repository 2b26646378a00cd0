"""
Per-subject scratch buffer for a review being written or edited.

Drafts live in the in-memory store by default and are lost when the process
restarts; subjects then have to start the edit again. ``RedisDraftStore``
keeps them in the shared store under a short TTL instead, at the cost of one
round trip per field edit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import redis.asyncio as redis

from reviewbot import redis_client
from reviewbot.errors import NotFound, ValidationError
from reviewbot.reviews.models import RatingDimension, Ratings, Review
from reviewbot.reviews.service import (
    ReviewService,
    validate_rating,
    validate_ratings,
    validate_text,
)

logger = logging.getLogger(__name__)

DraftMutator = Callable[[Optional["ReviewDraft"]], Optional["ReviewDraft"]]


@dataclass
class ReviewDraft:
    subject_id: int
    target_course_id: str
    ratings: Ratings = field(default_factory=Ratings)
    text: Optional[str] = None
    anonymous: bool = False
    source_review_id: Optional[str] = None
    committing: bool = False
    updated_at: float = 0.0

    @property
    def is_edit(self) -> bool:
        return self.source_review_id is not None

    def to_dict(self) -> Dict:
        return {
            "subject_id": self.subject_id,
            "target_course_id": self.target_course_id,
            "ratings": self.ratings.to_dict(),
            "text": self.text,
            "anonymous": self.anonymous,
            "source_review_id": self.source_review_id,
            "committing": self.committing,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ReviewDraft":
        return cls(
            subject_id=int(data["subject_id"]),
            target_course_id=data["target_course_id"],
            ratings=Ratings.from_dict(data.get("ratings")),
            text=data.get("text"),
            anonymous=bool(data.get("anonymous", False)),
            source_review_id=data.get("source_review_id"),
            committing=bool(data.get("committing", False)),
            updated_at=float(data.get("updated_at", 0.0)),
        )


class InMemoryDraftStore:
    def __init__(self) -> None:
        self._drafts: Dict[int, Dict] = {}
        self._lock = asyncio.Lock()

    async def get(self, subject_id: int) -> Optional[ReviewDraft]:
        data = self._drafts.get(subject_id)
        return ReviewDraft.from_dict(data) if data else None

    async def put(self, draft: ReviewDraft) -> None:
        self._drafts[draft.subject_id] = draft.to_dict()

    async def delete(self, subject_id: int) -> None:
        self._drafts.pop(subject_id, None)

    async def update(self, subject_id: int, mutate: DraftMutator) -> Optional[ReviewDraft]:
        async with self._lock:
            updated = mutate(await self.get(subject_id))
            if updated is None:
                self._drafts.pop(subject_id, None)
            else:
                self._drafts[subject_id] = updated.to_dict()
            return updated


class RedisDraftStore:
    """Drafts as short-lived JSON entries in the shared store."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 3600, key_prefix: str = "draft:"):
        self._redis = client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, subject_id: int) -> str:
        return f"{self.key_prefix}{subject_id}"

    async def get(self, subject_id: int) -> Optional[ReviewDraft]:
        data = await redis_client.get_json(self._redis, self._key(subject_id))
        return ReviewDraft.from_dict(data) if data else None

    async def put(self, draft: ReviewDraft) -> None:
        await redis_client.set_json(
            self._redis, self._key(draft.subject_id), draft.to_dict(), ttl_seconds=self.ttl_seconds
        )

    async def delete(self, subject_id: int) -> None:
        await redis_client.delete_key(self._redis, self._key(subject_id))

    async def update(self, subject_id: int, mutate: DraftMutator) -> Optional[ReviewDraft]:
        def apply(current: Optional[Dict]) -> Optional[Dict]:
            updated = mutate(ReviewDraft.from_dict(current) if current else None)
            return updated.to_dict() if updated else None

        data = await redis_client.update_json(
            self._redis, self._key(subject_id), apply, ttl_seconds=self.ttl_seconds
        )
        return ReviewDraft.from_dict(data) if data else None


class DraftEditor:
    """
    Mutates the subject's draft and commits it through the review service.

    While a commit is in flight the draft is flagged ``committing``: edits and
    discards are refused until the commit has either landed (the draft is then
    removed) or failed (the flag is cleared and the draft kept for a retry).
    """

    def __init__(self, store, service: ReviewService, clock: Callable[[], float] = time.time):
        self.store = store
        self.service = service
        self._clock = clock

    async def begin(
        self, subject_id: int, target_course_id: str, source_review_id: Optional[str] = None
    ) -> ReviewDraft:
        """Start a fresh draft, seeded from the source review when editing."""
        draft = ReviewDraft(
            subject_id=subject_id,
            target_course_id=target_course_id,
            updated_at=self._clock(),
        )
        if source_review_id is not None:
            source: Review = await self.service.get_owned_review(subject_id, source_review_id)
            draft.target_course_id = source.course_id
            draft.ratings = Ratings.from_dict(source.ratings.to_dict())
            draft.text = source.text
            draft.anonymous = source.anonymous
            draft.source_review_id = source.review_id
        await self.store.put(draft)
        logger.debug(f"Draft started for subject {subject_id} on {draft.target_course_id}")
        return draft

    async def get(self, subject_id: int) -> Optional[ReviewDraft]:
        return await self.store.get(subject_id)

    async def _edit(self, subject_id: int, change: Callable[[ReviewDraft], None]) -> ReviewDraft:
        now = self._clock()

        def mutate(current: Optional[ReviewDraft]) -> Optional[ReviewDraft]:
            if current is None or current.committing:
                return current
            change(current)
            current.updated_at = now
            return current

        before = await self.store.get(subject_id)
        if before is None:
            raise NotFound("No review draft in progress")
        if before.committing:
            raise ValidationError("Your review is being saved, please wait")
        updated = await self.store.update(subject_id, mutate)
        if updated is None:
            raise NotFound("No review draft in progress")
        return updated

    async def set_rating(self, subject_id: int, dimension: RatingDimension, value: int) -> ReviewDraft:
        value = validate_rating(dimension, value)
        return await self._edit(subject_id, lambda d: d.ratings.set(dimension, value))

    async def set_text(self, subject_id: int, text: Optional[str]) -> ReviewDraft:
        text = validate_text(text)

        def change(draft: ReviewDraft) -> None:
            draft.text = text

        return await self._edit(subject_id, change)

    async def set_anonymous(self, subject_id: int, anonymous: bool) -> ReviewDraft:
        def change(draft: ReviewDraft) -> None:
            draft.anonymous = anonymous

        return await self._edit(subject_id, change)

    async def toggle_anonymous(self, subject_id: int) -> ReviewDraft:
        def change(draft: ReviewDraft) -> None:
            draft.anonymous = not draft.anonymous

        return await self._edit(subject_id, change)

    async def commit(self, subject_id: int) -> Review:
        """
        Validate and write the draft as a review.

        Raises ValidationError (draft untouched) or whatever the service
        raises (draft kept, ``committing`` cleared).
        """
        draft = await self.store.get(subject_id)
        if draft is None:
            raise NotFound("No review draft in progress")
        if draft.committing:
            raise ValidationError("Your review is already being saved")
        validate_ratings(draft.ratings)
        if draft.text is not None:
            validate_text(draft.text)

        claimed = False

        def claim(current: Optional[ReviewDraft]) -> Optional[ReviewDraft]:
            nonlocal claimed
            claimed = current is not None and not current.committing
            if claimed:
                current.committing = True
            return current

        await self.store.update(subject_id, claim)
        if not claimed:
            raise ValidationError("Your review is already being saved")

        try:
            if draft.is_edit:
                review = await self.service.update_review(
                    subject_id,
                    draft.source_review_id,
                    draft.ratings,
                    text=draft.text,
                    anonymous=draft.anonymous,
                )
            else:
                review = await self.service.create_review(
                    subject_id,
                    draft.target_course_id,
                    draft.ratings,
                    text=draft.text,
                    anonymous=draft.anonymous,
                )
        except Exception:
            await self.store.update(subject_id, _release)
            raise

        await self.store.delete(subject_id)
        logger.info(
            "review_committed",
            extra={"subject_id": subject_id, "review_id": review.review_id, "edit": draft.is_edit},
        )
        return review

    async def discard(self, subject_id: int) -> bool:
        """
        Drop the draft.

        Returns False, leaving the draft alone, while a commit is in flight.
        """
        refused = False

        def drop(current: Optional[ReviewDraft]) -> Optional[ReviewDraft]:
            nonlocal refused
            refused = current is not None and current.committing
            return current if refused else None

        await self.store.update(subject_id, drop)
        if refused:
            logger.info("draft_discard_refused", extra={"subject_id": subject_id})
        return not refused


def _release(current: Optional[ReviewDraft]) -> Optional[ReviewDraft]:
    if current is not None:
        current.committing = False
    return current
