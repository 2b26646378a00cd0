import pytest

from reviewbot.errors import Conflict, DuplicateSubmission, NotFound, ValidationError
from reviewbot.reviews.catalog import CourseCatalog, check_grading_scheme, load_catalog, paginate
from reviewbot.reviews.models import Ratings, VoteDirection, VoteOutcome
from reviewbot.reviews.repository import InMemoryReviewRepository, RedisReviewRepository
from reviewbot.reviews.service import ReviewService

UP = VoteDirection.UP
DOWN = VoteDirection.DOWN


@pytest.fixture(params=["memory", "redis"])
def service(request, dummy_redis, catalog, clock):
    if request.param == "memory":
        repository = InMemoryReviewRepository()
    else:
        repository = RedisReviewRepository(dummy_redis)
    return ReviewService(repository, catalog, clock)


def _ratings(overall=4, quality=4, difficulty=3) -> Ratings:
    return Ratings(overall=overall, quality=quality, difficulty=difficulty)


@pytest.mark.asyncio
async def test_create_and_list(service, clock):
    first = await service.create_review(1, "CSE101", _ratings(), text="good")
    clock.advance(10)
    second = await service.create_review(2, "CSE101", _ratings(2, 2, 5), anonymous=True)

    reviews = await service.reviews_for_course("CSE101")
    assert [r.review_id for r in reviews] == [second.review_id, first.review_id]
    assert [r.review_id for r in await service.user_reviews(1)] == [first.review_id]


@pytest.mark.asyncio
async def test_create_rejects_unknown_course_and_bad_input(service):
    with pytest.raises(NotFound):
        await service.create_review(1, "NOPE999", _ratings())
    with pytest.raises(ValidationError):
        await service.create_review(1, "CSE101", _ratings(overall=6))
    with pytest.raises(ValidationError):
        await service.create_review(1, "CSE101", _ratings(), text="z" * 2001)


@pytest.mark.asyncio
async def test_duplicate_submission_reports_existing_review(service):
    existing = await service.create_review(1, "CSE101", _ratings())

    with pytest.raises(DuplicateSubmission) as excinfo:
        await service.create_review(1, "CSE101", _ratings(5, 5, 5))

    assert excinfo.value.existing_review_id == existing.review_id
    assert (await service.can_review(1, "CSE101")).review_id == existing.review_id
    assert await service.can_review(1, "MAA101") is None


@pytest.mark.asyncio
async def test_vote_toggle_replace_and_self_vote(service):
    review = await service.create_review(1, "CSE101", _ratings())

    assert await service.cast_vote(2, review.review_id, UP) is VoteOutcome.CREATED
    assert (await service.get_review(review.review_id)).upvotes == 1

    assert await service.cast_vote(2, review.review_id, UP) is VoteOutcome.REMOVED
    stored = await service.get_review(review.review_id)
    assert (stored.upvotes, stored.downvotes) == (0, 0)
    assert await service.get_vote(2, review.review_id) is None

    await service.cast_vote(2, review.review_id, UP)
    assert await service.cast_vote(2, review.review_id, DOWN) is VoteOutcome.REPLACED
    stored = await service.get_review(review.review_id)
    assert (stored.upvotes, stored.downvotes) == (0, 1)
    assert await service.get_vote(2, review.review_id) is DOWN

    with pytest.raises(Conflict):
        await service.cast_vote(1, review.review_id, UP)


@pytest.mark.asyncio
async def test_net_votes_order_course_reviews(service, clock):
    a = await service.create_review(1, "CSE101", _ratings())
    clock.advance(5)
    b = await service.create_review(2, "CSE101", _ratings())
    await service.cast_vote(3, a.review_id, UP)

    reviews = await service.reviews_for_course("CSE101")
    assert [r.review_id for r in reviews] == [a.review_id, b.review_id]


@pytest.mark.asyncio
async def test_only_the_author_can_update_or_delete(service):
    review = await service.create_review(1, "CSE101", _ratings())

    with pytest.raises(NotFound):
        await service.update_review(2, review.review_id, _ratings(1, 1, 1))
    with pytest.raises(NotFound):
        await service.delete_review(2, review.review_id)

    updated = await service.update_review(1, review.review_id, _ratings(5, 5, 1), text="changed")
    assert updated.text == "changed"
    assert (await service.get_review(review.review_id)).ratings.overall == 5


@pytest.mark.asyncio
async def test_soft_deleted_review_is_not_found_and_frees_the_course(service):
    review = await service.create_review(1, "CSE101", _ratings())
    await service.cast_vote(2, review.review_id, UP)

    await service.delete_review(1, review.review_id)

    with pytest.raises(NotFound):
        await service.get_review(review.review_id)
    with pytest.raises(NotFound):
        await service.cast_vote(2, review.review_id, DOWN)
    with pytest.raises(NotFound):
        await service.update_review(1, review.review_id, _ratings())
    assert await service.reviews_for_course("CSE101") == []
    assert await service.can_review(1, "CSE101") is None

    again = await service.create_review(1, "CSE101", _ratings())
    assert again.review_id != review.review_id


@pytest.mark.asyncio
async def test_course_averages_follow_changes(service, catalog):
    await service.create_review(1, "CSE101", _ratings(4, 4, 2))
    second = await service.create_review(2, "CSE101", _ratings(2, 3, 4))

    course = catalog.get("CSE101")
    assert course.review_count == 2
    assert course.average_ratings == {"overall": 3.0, "quality": 3.5, "difficulty": 3.0}

    await service.delete_review(2, second.review_id)
    assert catalog.get("CSE101").review_count == 1
    assert catalog.get("CSE101").average_ratings["overall"] == 4.0


@pytest.mark.asyncio
async def test_profiles(service):
    assert await service.get_profile(1) is None

    profile = await service.save_profile(1, "  Asha  ", "y22a")
    assert (profile.name, profile.tag) == ("Asha", "Y22A")
    assert profile.display_name() == "Asha (Y22A)"

    with pytest.raises(ValidationError):
        await service.save_profile(1, "A", "Y22A")
    with pytest.raises(ValidationError):
        await service.save_profile(1, "Asha", "TOOLONG")

    review = await service.create_review(1, "CSE101", _ratings())
    assert await service.author_name(review) == "Asha (Y22A)"
    hidden = await service.create_review(1, "MAA101", _ratings(), anonymous=True)
    assert await service.author_name(hidden) == "Anonymous"


@pytest.mark.asyncio
async def test_redis_vote_resolves_against_concurrent_cast(dummy_redis, catalog, clock):
    repository = RedisReviewRepository(dummy_redis)
    service = ReviewService(repository, catalog, clock)
    review = await service.create_review(1, "CSE101", _ratings())

    async def racing_cast(redis):
        await repository.cast_vote(2, review.review_id, UP, clock())

    dummy_redis.on_watch = racing_cast
    outcome = await service.cast_vote(2, review.review_id, UP)

    assert outcome is VoteOutcome.REMOVED
    stored = await service.get_review(review.review_id)
    assert stored.upvotes == 0


@pytest.mark.asyncio
async def test_edit_keeps_votes_cast_after_the_ownership_read(service):
    review = await service.create_review(1, "CSE101", _ratings())
    repository = service.repository
    original_get = repository.get_review

    async def get_then_vote(review_id):
        found = await original_get(review_id)
        repository.get_review = original_get
        await service.cast_vote(2, review_id, UP)
        return found

    repository.get_review = get_then_vote
    updated = await service.update_review(1, review.review_id, _ratings(5, 5, 1), text="edited")

    assert updated.upvotes == 1
    stored = await service.get_review(review.review_id)
    assert (stored.upvotes, stored.text, stored.ratings.overall) == (1, "edited", 5)
    assert await service.get_vote(2, review.review_id) is UP


@pytest.mark.asyncio
async def test_redis_edit_retries_against_concurrent_vote(dummy_redis, catalog, clock):
    repository = RedisReviewRepository(dummy_redis)
    service = ReviewService(repository, catalog, clock)
    review = await service.create_review(1, "CSE101", _ratings())

    async def racing_cast(redis):
        await repository.cast_vote(2, review.review_id, DOWN, clock())

    dummy_redis.on_watch = racing_cast
    await service.update_review(1, review.review_id, _ratings(1, 1, 1), anonymous=True)

    stored = await service.get_review(review.review_id)
    assert (stored.downvotes, stored.anonymous, stored.ratings.overall) == (1, True, 1)


@pytest.mark.asyncio
async def test_redis_delete_drops_votes_cast_during_the_delete(dummy_redis, catalog, clock):
    repository = RedisReviewRepository(dummy_redis)
    service = ReviewService(repository, catalog, clock)
    review = await service.create_review(1, "CSE101", _ratings())

    async def racing_cast(redis):
        await repository.cast_vote(2, review.review_id, UP, clock())

    dummy_redis.on_watch = racing_cast
    deleted = await service.delete_review(1, review.review_id)

    assert deleted.is_deleted
    assert (deleted.upvotes, deleted.downvotes) == (0, 0)
    assert await repository.get_vote(2, review.review_id) is None
    with pytest.raises(NotFound):
        await repository.cast_vote(3, review.review_id, UP, clock())


def test_paginate_clamps_pages():
    page = paginate(list(range(12)), 9, 5)
    assert page.page == 3
    assert page.items == [10, 11]
    assert page.has_previous and not page.has_next

    empty = paginate([], 1, 5)
    assert empty.total_pages == 1
    assert empty.items == []


def test_catalog_loading(tmp_path):
    path = tmp_path / "courses.json"
    path.write_text(
        '[{"course_id": "ECO101", "category": "ECO", "name": "Economics"},'
        ' {"course_id": "ECO201", "category": "ECO", "name": "Macro"}]',
        encoding="utf-8",
    )

    catalog = load_catalog(str(path))

    assert len(catalog) == 2
    assert [c.course_id for c in catalog.courses_in("ECO")] == ["ECO101", "ECO201"]
    assert catalog.is_category("SPOFAL")
    assert not catalog.is_category("XYZ")
    assert len(load_catalog(None)) == 0
    assert isinstance(load_catalog(""), CourseCatalog)


def test_grading_scheme_checks():
    with pytest.raises(ValidationError):
        check_grading_scheme("   ")
    assert check_grading_scheme("Labs 30%, final exam 70%") == []
    assert check_grading_scheme("Exam") == ["Grading scheme description is very short"]
    assert check_grading_scheme("x" * 501) == ["Grading scheme description is very long"]


def test_catalog_loads_grading_schemes_and_drops_blank_ones(tmp_path):
    path = tmp_path / "courses.json"
    path.write_text(
        '[{"course_id": "ECO101", "category": "ECO", "name": "Economics",'
        '  "grading_scheme": {"description": "Quizzes 20%, final exam 80%", "modified_by": "registrar"}},'
        ' {"course_id": "ECO201", "category": "ECO", "name": "Macro",'
        '  "grading_scheme": {"description": "  "}}]',
        encoding="utf-8",
    )

    catalog = load_catalog(str(path))

    scheme = catalog.get("ECO101").grading_scheme
    assert scheme.description == "Quizzes 20%, final exam 80%"
    assert scheme.modified_by == "registrar"
    assert catalog.get("ECO201").grading_scheme is None
