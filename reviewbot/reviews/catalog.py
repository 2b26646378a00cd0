"""Course catalog and list pagination."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

from reviewbot.errors import ValidationError
from reviewbot.reviews.models import Course

logger = logging.getLogger(__name__)

CATEGORIES: List[str] = [
    "MAA", "PHY", "CSE", "ECO", "LAB", "HSS", "PDV", "BIO", "CHE", "SPOFAL", "PRL",
]

CATEGORIES_PER_PAGE = 5
COURSES_PER_PAGE = 10
REVIEWS_PER_PAGE = 5

GRADING_SCHEME_SHORT = 10
GRADING_SCHEME_LONG = 500
NO_GRADING_SCHEME = "No grading information available"

T = TypeVar("T")


def check_grading_scheme(description: Optional[str]) -> List[str]:
    """
    Validate a grading scheme description.

    Raises ValidationError when it is blank; returns warnings for text that is
    suspiciously short or long but still usable.
    """
    text = (description or "").strip()
    if not text:
        raise ValidationError("Grading scheme description cannot be empty")
    warnings = []
    if len(text) < GRADING_SCHEME_SHORT:
        warnings.append("Grading scheme description is very short")
    if len(text) > GRADING_SCHEME_LONG:
        warnings.append("Grading scheme description is very long")
    return warnings


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    total_pages: int

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def paginate(items: Sequence[T], page: int, per_page: int) -> Page[T]:
    """Slice one 1-based page; out-of-range pages are clamped."""
    total_pages = max(1, math.ceil(len(items) / per_page))
    current = max(1, min(page, total_pages))
    start = (current - 1) * per_page
    return Page(items=list(items[start : start + per_page]), page=current, total_pages=total_pages)


class CourseCatalog:
    def __init__(self, courses: Iterable[Course] = ()) -> None:
        self._courses: Dict[str, Course] = {course.course_id: course for course in courses}

    @classmethod
    def from_json(cls, path: str) -> "CourseCatalog":
        """Load a JSON list of course objects."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        courses = [Course.from_dict(item) for item in data]
        for course in courses:
            if course.grading_scheme is None:
                continue
            try:
                for warning in check_grading_scheme(course.grading_scheme.description):
                    logger.warning(f"{course.course_id}: {warning}")
            except ValidationError as e:
                logger.warning(f"{course.course_id}: {e}; ignoring it")
                course.grading_scheme = None
        catalog = cls(courses)
        logger.info(f"Loaded {len(catalog)} courses from {path}")
        return catalog

    def __len__(self) -> int:
        return len(self._courses)

    def categories(self) -> List[str]:
        return list(CATEGORIES)

    def is_category(self, category: str) -> bool:
        return category in CATEGORIES

    def get(self, course_id: str) -> Optional[Course]:
        return self._courses.get(course_id)

    def courses_in(self, category: str) -> List[Course]:
        return sorted(
            (c for c in self._courses.values() if c.category == category),
            key=lambda c: c.course_id,
        )

    def update_stats(self, course_id: str, average_ratings: Dict[str, float], review_count: int) -> None:
        course = self._courses.get(course_id)
        if course is None:
            return
        course.average_ratings = dict(average_ratings)
        course.review_count = review_count


def load_catalog(path: Optional[str]) -> CourseCatalog:
    if not path:
        logger.warning("No course catalog configured; starting with an empty catalog.")
        return CourseCatalog()
    return CourseCatalog.from_json(path)
