"""
Finite state machine for the per-turn dialogue flow.

A conversation is either Idle or AwaitingParameter between turns;
Executing is entered and left within a single turn. Every turn builds a
fresh machine from the session it was handed, so no state lives in the
controller and independent sessions never interfere.

Usage:
    sm = DialogueStateMachine.for_session(None)
    sm.transition(TurnTrigger.MATCHED_NEEDS_INPUT)
    assert sm.current_state == DialogueState.AWAITING_PARAMETER
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from otto.schemas.turn_schema import ActiveSession

logger = logging.getLogger(__name__)


class DialogueState(str, Enum):
    """All possible dialogue states."""
    IDLE = "idle"
    AWAITING_PARAMETER = "awaiting_parameter"
    EXECUTING = "executing"


class TurnTrigger(str, Enum):
    """Events that cause state transitions."""
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"
    MATCHED_READY = "matched_ready"
    MATCHED_NEEDS_INPUT = "matched_needs_input"
    ACTION_RECOGNIZED = "action_recognized"
    VALUE_ACCEPTED = "value_accepted"
    VALUE_REJECTED = "value_rejected"
    LAST_VALUE_ACCEPTED = "last_value_accepted"
    SESSION_READY = "session_ready"
    SCRIPT_MISSING = "script_missing"
    RESET = "reset"
    EXECUTION_FINISHED = "execution_finished"


@dataclass
class Transition:
    """A single valid state transition."""
    from_state: DialogueState
    to_state: DialogueState
    trigger: TurnTrigger


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: DialogueState
    entered_at: datetime
    trigger: Optional[TurnTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


class DialogueStateMachine:
    """
    Deterministic state machine for one turn.

    The controller drives it with triggers as it makes decisions; an
    undefined trigger means the controller took a path the dialogue
    model does not allow, and is rejected with the valid alternatives.
    """

    TRANSITIONS: list[Transition] = [
        # --- Idle ---
        Transition(DialogueState.IDLE, DialogueState.IDLE, TurnTrigger.NO_MATCH),
        Transition(DialogueState.IDLE, DialogueState.IDLE, TurnTrigger.AMBIGUOUS),
        Transition(DialogueState.IDLE, DialogueState.EXECUTING, TurnTrigger.MATCHED_READY),
        Transition(DialogueState.IDLE, DialogueState.AWAITING_PARAMETER,
                   TurnTrigger.MATCHED_NEEDS_INPUT),
        Transition(DialogueState.IDLE, DialogueState.EXECUTING, TurnTrigger.ACTION_RECOGNIZED),

        # --- Parameter collection ---
        Transition(DialogueState.AWAITING_PARAMETER, DialogueState.AWAITING_PARAMETER,
                   TurnTrigger.VALUE_ACCEPTED),
        Transition(DialogueState.AWAITING_PARAMETER, DialogueState.AWAITING_PARAMETER,
                   TurnTrigger.VALUE_REJECTED),
        Transition(DialogueState.AWAITING_PARAMETER, DialogueState.EXECUTING,
                   TurnTrigger.LAST_VALUE_ACCEPTED),
        Transition(DialogueState.AWAITING_PARAMETER, DialogueState.EXECUTING,
                   TurnTrigger.SESSION_READY),
        Transition(DialogueState.AWAITING_PARAMETER, DialogueState.IDLE,
                   TurnTrigger.SCRIPT_MISSING),
        Transition(DialogueState.AWAITING_PARAMETER, DialogueState.IDLE, TurnTrigger.RESET),

        # --- Execution ends the turn ---
        Transition(DialogueState.EXECUTING, DialogueState.IDLE, TurnTrigger.EXECUTION_FINISHED),
    ]

    def __init__(self, initial_state: DialogueState = DialogueState.IDLE) -> None:
        self._current_state = initial_state
        self._history: list[StateEntry] = [
            StateEntry(state=initial_state, entered_at=datetime.now(timezone.utc))
        ]

    @classmethod
    def for_session(cls, session: Optional[ActiveSession]) -> "DialogueStateMachine":
        """Start from the state implied by the session passed into a turn."""
        if session is None:
            return cls(DialogueState.IDLE)
        return cls(DialogueState.AWAITING_PARAMETER)

    @property
    def current_state(self) -> DialogueState:
        return self._current_state

    def transition(self, trigger: TurnTrigger) -> DialogueState:
        """
        Execute a state transition.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == self._current_state and t.trigger == trigger:
                old_state = self._current_state
                self._current_state = t.to_state
                self._history.append(StateEntry(
                    state=self._current_state,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))
                logger.debug(
                    "State transition: %s -> %s (trigger: %s)",
                    old_state.value, self._current_state.value, trigger.value,
                )
                return self._current_state

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self) -> list[TurnTrigger]:
        """Return all triggers valid from the current state."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self._current_state]

    def get_history(self) -> list[StateEntry]:
        return list(self._history)

    def get_state_trace(self) -> list[str]:
        """Return ordered list of state names visited."""
        return [entry.state.value for entry in self._history]

    def is_between_turns(self) -> bool:
        """A turn may only end in a state that survives between turns."""
        return self._current_state != DialogueState.EXECUTING
