"""Error taxonomy for the conversation engine."""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class ReviewBotError(Exception):
    """Base class for every error the engine raises on purpose."""


class RateLimited(ReviewBotError):
    """Raised when a subject has used up its daily or lifetime quota."""

    def __init__(self, subject_id: int, reason: str, reset_time: Optional[datetime] = None):
        self.subject_id = subject_id
        self.reason = reason
        self.reset_time = reset_time
        super().__init__(f"Subject {subject_id} is rate limited ({reason})")


class InvalidTransition(ReviewBotError):
    """A handler tried to move a session along an edge that is not allowed."""

    def __init__(self, subject_id: int, from_state: str, to_state: str):
        self.subject_id = subject_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition {from_state} -> {to_state} for subject {subject_id}")


class ValidationError(ReviewBotError):
    """Out-of-range rating, oversize text or a malformed callback token."""


class DuplicateSubmission(ReviewBotError):
    """The subject already has a review for this course."""

    def __init__(self, subject_id: int, course_id: str, existing_review_id: str):
        self.subject_id = subject_id
        self.course_id = course_id
        self.existing_review_id = existing_review_id
        super().__init__(f"Subject {subject_id} already reviewed {course_id}")


class NotFound(ReviewBotError):
    """A referenced record does not exist or has been soft-deleted."""


class Conflict(ReviewBotError):
    """The action conflicts with ownership rules (e.g. voting on your own review)."""


class StoreUnavailable(ReviewBotError):
    """The shared store kept failing after the bounded retries."""


__all__ = [
    "ReviewBotError",
    "RateLimited",
    "InvalidTransition",
    "ValidationError",
    "DuplicateSubmission",
    "NotFound",
    "Conflict",
    "StoreUnavailable",
]
