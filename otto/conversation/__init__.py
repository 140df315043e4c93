from otto.conversation.controller import DialogueController
from otto.conversation.state_machine import (
    DialogueState,
    DialogueStateMachine,
    InvalidTransitionError,
    TurnTrigger,
)

__all__ = [
    "DialogueController",
    "DialogueStateMachine",
    "DialogueState",
    "TurnTrigger",
    "InvalidTransitionError",
]
