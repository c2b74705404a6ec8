"""
Session state definitions, allowed transitions and which user actions each
state accepts.
"""
from typing import Dict, FrozenSet, List

from interview.events import EventKind
from models.schemas import SessionState

S = SessionState

# Question states where the candidate is on a question and may act on it
QUESTION_STATES = frozenset({S.READY, S.PRESENTING, S.ARMED, S.PAUSED})


class SessionStates:
    """
    Transition table for the session state machine.
    """

    TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
        S.LOADING: frozenset({S.READY, S.ERROR}),
        S.READY: frozenset({S.PRESENTING, S.ARMED, S.ADVANCING}),
        S.PRESENTING: frozenset({S.READY, S.ARMED, S.ADVANCING}),
        S.ARMED: frozenset({S.PAUSED, S.ADVANCING}),
        S.PAUSED: frozenset({S.ARMED, S.PRESENTING, S.ADVANCING}),
        S.ADVANCING: frozenset({S.READY, S.PRESENTING, S.SUBMITTING}),
        S.SUBMITTING: frozenset({S.COMPLETED, S.ERROR}),
        S.ERROR: frozenset({S.SUBMITTING}),
        S.COMPLETED: frozenset(),
    }

    ACTIONS: Dict[EventKind, FrozenSet[SessionState]] = {
        EventKind.LOAD: frozenset({S.LOADING}),
        EventKind.START: frozenset({S.READY, S.PRESENTING, S.PAUSED}),
        EventKind.PAUSE: frozenset({S.ARMED}),
        EventKind.RESET: QUESTION_STATES,
        EventKind.NEXT: QUESTION_STATES,
        EventKind.PREV: QUESTION_STATES,
        EventKind.FINISH: QUESTION_STATES,
        EventKind.EDIT_ANSWER: QUESTION_STATES,
        EventKind.SPEAK_AGAIN: frozenset({S.READY, S.PRESENTING, S.PAUSED}),
        EventKind.TOGGLE_MUTE: QUESTION_STATES,
        EventKind.RETRY_SUBMIT: frozenset({S.ERROR}),
    }

    @classmethod
    def can_transition(cls, source: SessionState, target: SessionState) -> bool:
        """Check whether `source -> target` is an edge of the machine."""
        return target in cls.TRANSITIONS.get(source, frozenset())

    @classmethod
    def allows(cls, action: EventKind, state: SessionState) -> bool:
        """Check whether a user action is accepted in `state`."""
        return state in cls.ACTIONS.get(action, frozenset())

    @classmethod
    def get_allowed_actions(cls, state: SessionState) -> List[str]:
        return [action.value for action, states in cls.ACTIONS.items() if state in states]

