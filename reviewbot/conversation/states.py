from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class ConversationState(str, Enum):
    ROOT = "ROOT"
    BROWSING = "BROWSING"
    VIEWING_RECORD = "VIEWING_RECORD"
    DRAFTING = "DRAFTING"
    COLLECTING_PROFILE_NAME = "COLLECTING_PROFILE_NAME"
    COLLECTING_PROFILE_TAG = "COLLECTING_PROFILE_TAG"
    VIEWING_OWN_RECORDS = "VIEWING_OWN_RECORDS"
    EDITING_RECORD = "EDITING_RECORD"
    EDITING_RECORD_TEXT = "EDITING_RECORD_TEXT"


S = ConversationState

# ROOT is reachable from everywhere and is not listed here.
ALLOWED_TRANSITIONS: Dict[ConversationState, FrozenSet[ConversationState]] = {
    S.ROOT: frozenset({S.BROWSING, S.DRAFTING, S.VIEWING_OWN_RECORDS}),
    S.BROWSING: frozenset({S.VIEWING_RECORD}),
    S.VIEWING_RECORD: frozenset({S.BROWSING, S.DRAFTING}),
    S.DRAFTING: frozenset({S.VIEWING_RECORD, S.COLLECTING_PROFILE_NAME}),
    S.COLLECTING_PROFILE_NAME: frozenset({S.COLLECTING_PROFILE_TAG}),
    S.COLLECTING_PROFILE_TAG: frozenset({S.DRAFTING}),
    S.VIEWING_OWN_RECORDS: frozenset({S.DRAFTING, S.VIEWING_RECORD, S.EDITING_RECORD}),
    S.EDITING_RECORD: frozenset({S.VIEWING_OWN_RECORDS, S.EDITING_RECORD_TEXT}),
    S.EDITING_RECORD_TEXT: frozenset({S.EDITING_RECORD, S.VIEWING_OWN_RECORDS}),
}

# States in which a plain text message carries meaning.
TEXT_INPUT_STATES: FrozenSet[ConversationState] = frozenset(
    {
        S.DRAFTING,
        S.COLLECTING_PROFILE_NAME,
        S.COLLECTING_PROFILE_TAG,
        S.EDITING_RECORD_TEXT,
    }
)


def is_valid_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """
    Check a state change against the allow-list.

    Moving to ROOT is always allowed. Staying in the same state only refreshes
    the context (next rating step, another page) and is allowed too.
    """
    if to_state is S.ROOT:
        return True
    if from_state is to_state:
        return True
    return to_state in ALLOWED_TRANSITIONS.get(from_state, frozenset())
