import pytest

from reviewbot.errors import ValidationError
from reviewbot.reviews.models import RatingDimension, VoteDirection
from reviewbot.routing import tokens
from reviewbot.routing.tokens import parse_callback_token


@pytest.mark.parametrize(
    "token,expected",
    [
        ("main_menu", tokens.MainMenu()),
        ("help", tokens.Help()),
        ("browse_categories", tokens.BrowseCategories()),
        ("categories_page_2", tokens.BrowseCategories(page=2)),
        ("category_CSE", tokens.SelectCategory("CSE")),
        ("courses_CSE_page_3", tokens.CoursesPage("CSE", 3)),
        ("course_CSE101", tokens.SelectCourse("CSE101")),
        ("course_details_CSE101", tokens.CourseDetails("CSE101")),
        ("reviews_CSE101", tokens.ShowReviews("CSE101")),
        ("reviews_CSE101_page_2", tokens.ShowReviews("CSE101", 2)),
        ("vote_ab12_up", tokens.CastVote("ab12", VoteDirection.UP)),
        ("post_review", tokens.PostReview()),
        ("review_category_MAA", tokens.ReviewCategory("MAA")),
        ("review_course_MAA101", tokens.ReviewCourse("MAA101")),
        ("write_review_MAA101", tokens.WriteReview("MAA101")),
        ("rating_overall_4", tokens.Rate(RatingDimension.OVERALL, 4)),
        ("add_text_review", tokens.AddText()),
        ("skip_text_review", tokens.SkipText()),
        ("review_anonymous_yes", tokens.ChooseAnonymous(True)),
        ("review_anonymous_no", tokens.ChooseAnonymous(False)),
        ("confirm_review", tokens.ConfirmReview()),
        ("cancel_review", tokens.CancelReview()),
        ("my_reviews", tokens.MyReviews()),
        ("my_reviews_page_4", tokens.MyReviews(page=4)),
        ("manage_review_r1", tokens.ManageReview("r1")),
        ("delete_review_r1", tokens.DeleteReview("r1")),
        ("confirm_delete_r1", tokens.ConfirmDelete("r1")),
        ("edit_review_r1", tokens.EditReview("r1")),
        ("edit_rating_r1_quality", tokens.EditRating("r1", RatingDimension.QUALITY)),
        ("set_rating_r1_difficulty_2", tokens.SetRating("r1", RatingDimension.DIFFICULTY, 2)),
        ("edit_text_r1", tokens.EditText("r1")),
        ("edit_anonymous_r1", tokens.EditAnonymous("r1")),
        ("save_review_r1", tokens.SaveReview("r1")),
        ("cancel_edit_r1", tokens.CancelEdit("r1")),
        ("back_to_rating", tokens.BackToRating()),
        ("back_to_text", tokens.BackToText()),
        ("edit_current_review", tokens.EditCurrentReview()),
        ("edit_review_text", tokens.EditDraftText()),
        ("remove_review_text", tokens.RemoveDraftText()),
        ("edit_anonymity", tokens.EditAnonymity()),
        ("back_course", tokens.Back("course")),
        ("back_to_category", tokens.Back("to_category")),
        ("back_course_CSE101", tokens.Back("course_CSE101")),
    ],
)
def test_parses_every_action(token, expected):
    assert parse_callback_token(token) == expected


def test_ids_containing_underscores_are_split_from_the_right():
    assert parse_callback_token("set_rating_rev_2024_a_overall_5") == tokens.SetRating(
        "rev_2024_a", RatingDimension.OVERALL, 5
    )
    assert parse_callback_token("vote_rev_2024_a_down") == tokens.CastVote(
        "rev_2024_a", VoteDirection.DOWN
    )
    assert parse_callback_token("edit_rating_rev_2024_a_quality") == tokens.EditRating(
        "rev_2024_a", RatingDimension.QUALITY
    )
    assert parse_callback_token("course_PHY_LAB_1") == tokens.SelectCourse("PHY_LAB_1")
    assert parse_callback_token("reviews_PHY_LAB_1_page_2") == tokens.ShowReviews("PHY_LAB_1", 2)


def test_rating_and_set_rating_do_not_collide():
    assert isinstance(parse_callback_token("rating_quality_3"), tokens.Rate)
    assert isinstance(parse_callback_token("set_rating_x_quality_3"), tokens.SetRating)


@pytest.mark.parametrize("token", ["", "nonsense", "start", "reviewz_1", "main_menu_extra"])
def test_unknown_tokens_return_none(token):
    assert parse_callback_token(token) is None


@pytest.mark.parametrize(
    "token",
    [
        "rating_overall_6",
        "rating_overall_0",
        "rating_overall_x",
        "rating_fun_3",
        "set_rating_r1_overall_9",
        "set_rating_overall_3",
        "vote_r1_sideways",
        "vote_up",
        "categories_page_0",
        "courses_CSE_3",
        "review_anonymous_maybe",
        "course_",
        "back_",
    ],
)
def test_known_actions_with_bad_arguments_raise(token):
    with pytest.raises(ValidationError):
        parse_callback_token(token)


def test_builders_round_trip_through_the_parser():
    assert parse_callback_token(tokens.courses_page("CSE", 2)) == tokens.CoursesPage("CSE", 2)
    assert parse_callback_token(tokens.reviews_page("CSE101", 1)) == tokens.ShowReviews("CSE101")
    assert parse_callback_token(
        tokens.set_rating("r_1", RatingDimension.OVERALL, 5)
    ) == tokens.SetRating("r_1", RatingDimension.OVERALL, 5)


def test_exact_tokens_win_over_prefixes():
    assert parse_callback_token("edit_review_text") == tokens.EditDraftText()
    assert parse_callback_token("edit_review_r1") == tokens.EditReview("r1")
    assert parse_callback_token("back_to_rating") == tokens.BackToRating()
    assert parse_callback_token("back_to_other") == tokens.Back("to_other")


@pytest.mark.parametrize(
    "target,context,expected",
    [
        ("main_menu", {}, tokens.MainMenu()),
        ("categories", {}, tokens.BrowseCategories()),
        ("categories", {"categories_page": 2}, tokens.BrowseCategories(page=2)),
        ("to_category", {"category": "CSE"}, tokens.SelectCategory("CSE")),
        ("to_category", {}, tokens.BrowseCategories()),
        ("course", {"course_id": "PHY_LAB_1"}, tokens.SelectCourse("PHY_LAB_1")),
        ("course", {}, tokens.BrowseCategories()),
        ("category_MAA", {}, tokens.SelectCategory("MAA")),
        ("course_PHY_LAB_1", {"course_id": "CSE101"}, tokens.SelectCourse("PHY_LAB_1")),
        ("course_", {}, tokens.MainMenu()),
        ("somewhere", {}, tokens.MainMenu()),
    ],
)
def test_resolve_back(target, context, expected):
    assert tokens.resolve_back(target, context) == expected
