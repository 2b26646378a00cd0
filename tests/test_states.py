import itertools

import pytest

from reviewbot.conversation.states import (
    ALLOWED_TRANSITIONS,
    ConversationState as S,
    is_valid_transition,
)


def test_root_is_always_reachable():
    for state in S:
        assert is_valid_transition(state, S.ROOT)


def test_pairs_outside_allow_list_are_rejected():
    for from_state, to_state in itertools.product(S, S):
        if to_state is S.ROOT or from_state is to_state:
            continue
        expected = to_state in ALLOWED_TRANSITIONS[from_state]
        assert is_valid_transition(from_state, to_state) is expected, (from_state, to_state)


@pytest.mark.parametrize(
    "from_state,to_state",
    [
        (S.ROOT, S.BROWSING),
        (S.BROWSING, S.VIEWING_RECORD),
        (S.VIEWING_RECORD, S.DRAFTING),
        (S.DRAFTING, S.COLLECTING_PROFILE_NAME),
        (S.COLLECTING_PROFILE_NAME, S.COLLECTING_PROFILE_TAG),
        (S.COLLECTING_PROFILE_TAG, S.DRAFTING),
        (S.VIEWING_OWN_RECORDS, S.EDITING_RECORD),
        (S.EDITING_RECORD, S.EDITING_RECORD_TEXT),
        (S.EDITING_RECORD_TEXT, S.EDITING_RECORD),
    ],
)
def test_allowed_edges(from_state, to_state):
    assert is_valid_transition(from_state, to_state)


@pytest.mark.parametrize(
    "from_state,to_state",
    [
        (S.ROOT, S.EDITING_RECORD),
        (S.BROWSING, S.DRAFTING),
        (S.DRAFTING, S.EDITING_RECORD),
        (S.COLLECTING_PROFILE_NAME, S.DRAFTING),
        (S.EDITING_RECORD, S.DRAFTING),
    ],
)
def test_rejected_edges(from_state, to_state):
    assert not is_valid_transition(from_state, to_state)


def test_every_state_has_an_entry():
    assert set(ALLOWED_TRANSITIONS) == set(S)
