"""
Callback token grammar.

A token is parsed once, up front, into one of the frozen action classes
below; the router dispatches on the class. Exact tokens are tried first, then
the longest matching prefix, so overlapping prefixes such as ``course_`` and
``course_details_`` never depend on declaration order. Fixed-width arguments
(page numbers, rating digits, dimensions, vote directions) are split off from
the right because record ids may themselves contain ``_``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from reviewbot.errors import ValidationError
from reviewbot.reviews.models import MAX_RATING, MIN_RATING, RatingDimension, VoteDirection


@dataclass(frozen=True)
class MainMenu:
    pass


@dataclass(frozen=True)
class Help:
    pass


@dataclass(frozen=True)
class Back:
    target: str


@dataclass(frozen=True)
class BrowseCategories:
    page: int = 1


@dataclass(frozen=True)
class SelectCategory:
    category: str


@dataclass(frozen=True)
class CoursesPage:
    category: str
    page: int


@dataclass(frozen=True)
class SelectCourse:
    course_id: str


@dataclass(frozen=True)
class CourseDetails:
    course_id: str


@dataclass(frozen=True)
class ShowReviews:
    course_id: str
    page: int = 1


@dataclass(frozen=True)
class CastVote:
    review_id: str
    direction: VoteDirection


@dataclass(frozen=True)
class PostReview:
    pass


@dataclass(frozen=True)
class ReviewCategory:
    category: str


@dataclass(frozen=True)
class ReviewCourse:
    course_id: str


@dataclass(frozen=True)
class WriteReview:
    course_id: str


@dataclass(frozen=True)
class Rate:
    dimension: RatingDimension
    value: int


@dataclass(frozen=True)
class AddText:
    pass


@dataclass(frozen=True)
class SkipText:
    pass


@dataclass(frozen=True)
class ChooseAnonymous:
    anonymous: bool


@dataclass(frozen=True)
class ConfirmReview:
    pass


@dataclass(frozen=True)
class CancelReview:
    pass


@dataclass(frozen=True)
class BackToRating:
    pass


@dataclass(frozen=True)
class BackToText:
    pass


@dataclass(frozen=True)
class EditCurrentReview:
    pass


@dataclass(frozen=True)
class EditDraftText:
    pass


@dataclass(frozen=True)
class RemoveDraftText:
    pass


@dataclass(frozen=True)
class EditAnonymity:
    pass


@dataclass(frozen=True)
class MyReviews:
    page: int = 1


@dataclass(frozen=True)
class ManageReview:
    review_id: str


@dataclass(frozen=True)
class DeleteReview:
    review_id: str


@dataclass(frozen=True)
class ConfirmDelete:
    review_id: str


@dataclass(frozen=True)
class EditReview:
    review_id: str


@dataclass(frozen=True)
class EditRating:
    review_id: str
    dimension: RatingDimension


@dataclass(frozen=True)
class SetRating:
    review_id: str
    dimension: RatingDimension
    value: int


@dataclass(frozen=True)
class EditText:
    review_id: str


@dataclass(frozen=True)
class EditAnonymous:
    review_id: str


@dataclass(frozen=True)
class SaveReview:
    review_id: str


@dataclass(frozen=True)
class CancelEdit:
    review_id: str


Action = Union[
    MainMenu, Help, Back, BrowseCategories, SelectCategory, CoursesPage, SelectCourse,
    CourseDetails, ShowReviews, CastVote, PostReview, ReviewCategory, ReviewCourse,
    WriteReview, Rate, AddText, SkipText, ChooseAnonymous, ConfirmReview, CancelReview,
    BackToRating, BackToText, EditCurrentReview, EditDraftText, RemoveDraftText, EditAnonymity,
    MyReviews, ManageReview, DeleteReview, ConfirmDelete, EditReview, EditRating,
    SetRating, EditText, EditAnonymous, SaveReview, CancelEdit,
]


def _malformed(token: str) -> ValidationError:
    return ValidationError(f"Malformed button data: {token!r}")


def _ident(value: str) -> str:
    if not value:
        raise ValueError("empty identifier")
    return value


def _page(value: str) -> int:
    page = int(value)
    if page < 1:
        raise ValueError("page must be positive")
    return page


def _rating(value: str) -> int:
    if not value.isdigit():
        raise ValueError("rating must be a digit")
    rating = int(value)
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValueError("rating out of range")
    return rating


def _split_right(rest: str, parts: int) -> List[str]:
    """Split ``parts`` fixed-width fields off the right; the head keeps any ``_``."""
    pieces = rest.rsplit("_", parts)
    if len(pieces) != parts + 1:
        raise ValueError("not enough fields")
    return pieces


def _courses_page(rest: str) -> CoursesPage:
    category, marker, page = _split_right(rest, 2)
    if marker != "page":
        raise ValueError("expected page marker")
    return CoursesPage(category=_ident(category), page=_page(page))


def _reviews(rest: str) -> ShowReviews:
    pieces = rest.rsplit("_", 2)
    if len(pieces) == 3 and pieces[1] == "page":
        return ShowReviews(course_id=_ident(pieces[0]), page=_page(pieces[2]))
    return ShowReviews(course_id=_ident(rest))


def _vote(rest: str) -> CastVote:
    review_id, direction = _split_right(rest, 1)
    return CastVote(review_id=_ident(review_id), direction=VoteDirection(direction))


def _rate(rest: str) -> Rate:
    dimension, value = _split_right(rest, 1)
    return Rate(dimension=RatingDimension(dimension), value=_rating(value))


def _anonymous(rest: str) -> ChooseAnonymous:
    if rest not in ("yes", "no"):
        raise ValueError("expected yes or no")
    return ChooseAnonymous(anonymous=rest == "yes")


def _edit_rating(rest: str) -> EditRating:
    review_id, dimension = _split_right(rest, 1)
    return EditRating(review_id=_ident(review_id), dimension=RatingDimension(dimension))


def _set_rating(rest: str) -> SetRating:
    review_id, dimension, value = _split_right(rest, 2)
    return SetRating(
        review_id=_ident(review_id),
        dimension=RatingDimension(dimension),
        value=_rating(value),
    )


EXACT: Dict[str, Action] = {
    "main_menu": MainMenu(),
    "help": Help(),
    "browse_categories": BrowseCategories(),
    "post_review": PostReview(),
    "add_text_review": AddText(),
    "skip_text_review": SkipText(),
    "confirm_review": ConfirmReview(),
    "cancel_review": CancelReview(),
    "back_to_rating": BackToRating(),
    "back_to_text": BackToText(),
    "edit_current_review": EditCurrentReview(),
    "edit_review_text": EditDraftText(),
    "remove_review_text": RemoveDraftText(),
    "edit_anonymity": EditAnonymity(),
    "my_reviews": MyReviews(),
}

PREFIXES: Dict[str, Callable[[str], Action]] = {
    "back_": lambda rest: Back(target=_ident(rest)),
    "categories_page_": lambda rest: BrowseCategories(page=_page(rest)),
    "category_": lambda rest: SelectCategory(category=_ident(rest)),
    "courses_": _courses_page,
    "course_": lambda rest: SelectCourse(course_id=_ident(rest)),
    "course_details_": lambda rest: CourseDetails(course_id=_ident(rest)),
    "reviews_": _reviews,
    "vote_": _vote,
    "review_category_": lambda rest: ReviewCategory(category=_ident(rest)),
    "review_course_": lambda rest: ReviewCourse(course_id=_ident(rest)),
    "write_review_": lambda rest: WriteReview(course_id=_ident(rest)),
    "rating_": _rate,
    "review_anonymous_": _anonymous,
    "my_reviews_page_": lambda rest: MyReviews(page=_page(rest)),
    "manage_review_": lambda rest: ManageReview(review_id=_ident(rest)),
    "delete_review_": lambda rest: DeleteReview(review_id=_ident(rest)),
    "confirm_delete_": lambda rest: ConfirmDelete(review_id=_ident(rest)),
    "edit_review_": lambda rest: EditReview(review_id=_ident(rest)),
    "edit_rating_": _edit_rating,
    "set_rating_": _set_rating,
    "edit_text_": lambda rest: EditText(review_id=_ident(rest)),
    "edit_anonymous_": lambda rest: EditAnonymous(review_id=_ident(rest)),
    "save_review_": lambda rest: SaveReview(review_id=_ident(rest)),
    "cancel_edit_": lambda rest: CancelEdit(review_id=_ident(rest)),
}

_BY_LENGTH: List[Tuple[str, Callable[[str], Action]]] = sorted(
    PREFIXES.items(), key=lambda item: len(item[0]), reverse=True
)


def parse_callback_token(token: str) -> Optional[Action]:
    """
    Parse a button token.

    Returns None for tokens outside the grammar and raises ValidationError
    when a known action carries arguments that do not parse.
    """
    token = (token or "").strip()
    if token in EXACT:
        return EXACT[token]
    for prefix, parser in _BY_LENGTH:
        if token.startswith(prefix):
            try:
                return parser(token[len(prefix):])
            except ValueError as e:
                raise _malformed(token) from e
    return None


def resolve_back(target: str, context: Dict) -> Action:
    """
    Turn a ``back_<target>`` button into the screen it leads to.

    Named targets read the ids from the session context, so the button stays
    short; ``category_<id>`` and ``course_<id>`` targets carry their own id.
    Anything unresolvable lands on the main menu.
    """
    if target == "main_menu":
        return MainMenu()
    if target == "categories":
        return BrowseCategories(page=context.get("categories_page") or 1)
    if target == "to_category":
        category = context.get("category")
        return SelectCategory(category) if category else BrowseCategories()
    if target == "course":
        course_id = context.get("course_id")
        return SelectCourse(course_id) if course_id else BrowseCategories()
    for prefix, build in (("category_", SelectCategory), ("course_", SelectCourse)):
        if target.startswith(prefix) and len(target) > len(prefix):
            return build(target[len(prefix):])
    return MainMenu()


# Token builders used when rendering keyboards.

def categories_page(page: int) -> str:
    return f"categories_page_{page}"


def courses_page(category: str, page: int) -> str:
    return f"courses_{category}_page_{page}"


def reviews_page(course_id: str, page: int) -> str:
    return f"reviews_{course_id}_page_{page}" if page > 1 else f"reviews_{course_id}"


def vote(review_id: str, direction: VoteDirection) -> str:
    return f"vote_{review_id}_{direction.value}"


def rating(dimension: RatingDimension, value: int) -> str:
    return f"rating_{dimension.value}_{value}"


def set_rating(review_id: str, dimension: RatingDimension, value: int) -> str:
    return f"set_rating_{review_id}_{dimension.value}_{value}"


def edit_rating(review_id: str, dimension: RatingDimension) -> str:
    return f"edit_rating_{review_id}_{dimension.value}"
