from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Optional

MAX_TEXT_LENGTH = 2000
MIN_RATING = 1
MAX_RATING = 5


class RatingDimension(str, Enum):
    OVERALL = "overall"
    QUALITY = "quality"
    DIFFICULTY = "difficulty"


class VoteDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class VoteOutcome(str, Enum):
    CREATED = "created"
    REPLACED = "replaced"
    REMOVED = "removed"


@dataclass
class Ratings:
    overall: Optional[int] = None
    quality: Optional[int] = None
    difficulty: Optional[int] = None

    def get(self, dimension: RatingDimension) -> Optional[int]:
        return getattr(self, dimension.value)

    def set(self, dimension: RatingDimension, value: Optional[int]) -> None:
        setattr(self, dimension.value, value)

    def is_complete(self) -> bool:
        return all(self.get(d) is not None for d in RatingDimension)

    def to_dict(self) -> Dict[str, Optional[int]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "Ratings":
        data = data or {}
        return cls(
            overall=data.get("overall"),
            quality=data.get("quality"),
            difficulty=data.get("difficulty"),
        )


@dataclass
class Review:
    review_id: str
    course_id: str
    subject_id: int
    ratings: Ratings
    text: Optional[str] = None
    anonymous: bool = False
    upvotes: int = 0
    downvotes: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0
    is_deleted: bool = False

    @property
    def net_votes(self) -> int:
        return self.upvotes - self.downvotes

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["ratings"] = self.ratings.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Review":
        return cls(
            review_id=data["review_id"],
            course_id=data["course_id"],
            subject_id=int(data["subject_id"]),
            ratings=Ratings.from_dict(data.get("ratings")),
            text=data.get("text"),
            anonymous=bool(data.get("anonymous", False)),
            upvotes=int(data.get("upvotes", 0)),
            downvotes=int(data.get("downvotes", 0)),
            created_at=float(data.get("created_at", 0.0)),
            updated_at=float(data.get("updated_at", 0.0)),
            is_deleted=bool(data.get("is_deleted", False)),
        )


@dataclass
class Vote:
    voter_id: int
    review_id: str
    direction: VoteDirection
    created_at: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "voter_id": self.voter_id,
            "review_id": self.review_id,
            "direction": self.direction.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Vote":
        return cls(
            voter_id=int(data["voter_id"]),
            review_id=data["review_id"],
            direction=VoteDirection(data["direction"]),
            created_at=float(data.get("created_at", 0.0)),
        )


@dataclass
class UserProfile:
    subject_id: int
    name: Optional[str] = None
    tag: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.name and self.tag)

    def display_name(self) -> str:
        return f"{self.name} ({self.tag})" if self.is_complete else "Anonymous"

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "UserProfile":
        return cls(subject_id=int(data["subject_id"]), name=data.get("name"), tag=data.get("tag"))


@dataclass
class GradingScheme:
    description: str
    last_modified: Optional[float] = None
    modified_by: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "GradingScheme":
        return cls(
            description=data.get("description") or "",
            last_modified=data.get("last_modified"),
            modified_by=data.get("modified_by"),
        )


@dataclass
class Course:
    course_id: str
    category: str
    name: str
    description: str = ""
    average_ratings: Dict[str, float] = field(
        default_factory=lambda: {d.value: 0.0 for d in RatingDimension}
    )
    review_count: int = 0
    grading_scheme: Optional[GradingScheme] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "Course":
        course = cls(
            course_id=data["course_id"],
            category=data["category"],
            name=data["name"],
            description=data.get("description", ""),
        )
        if data.get("average_ratings"):
            course.average_ratings = dict(data["average_ratings"])
        course.review_count = int(data.get("review_count", 0))
        if data.get("grading_scheme"):
            course.grading_scheme = GradingScheme.from_dict(data["grading_scheme"])
        return course
