"""User-facing response text for each dialogue outcome."""

import re
from typing import Optional

from otto.schemas.script_schema import ParameterSpec, ScriptDefinition
from otto.schemas.turn_schema import ExecutionOutcome

FALLBACK_MESSAGE = (
    "I'm not sure how to help with that. "
    "You can create a custom script for this task if you'd like."
)
GREETING_MESSAGE = "Hello! I can help you run scripts and automations. What would you like to do?"
REMINDER_MESSAGE = (
    "I've noted that! (Reminders only work while the app is open in this version.)"
)
LOST_TRACK_MESSAGE = "I lost track of what we were doing. Let's start over."
SCRIPT_NOT_FOUND_MESSAGE = "I couldn't find that script."
RESET_MESSAGE = "Okay, I've cancelled that. What would you like to do?"
INTERNAL_ERROR_MESSAGE = "Something went wrong on my side. Please try again."
ACTIONS_NOT_CONFIGURED_MESSAGE = "External actions are not configured."

_GREETING = re.compile(r"\b(hello|hi|hey)\b")
_REMIND = re.compile(r"\bremind")


def build_parameter_prompt(param: ParameterSpec) -> str:
    return param.prompt_text()


def build_reprompt(param: ParameterSpec) -> str:
    """Ask again for a value that could not be understood."""
    return (
        f"Sorry, I couldn't read that as a {param.value_type.value}. "
        f"{param.prompt_text()}"
    )


def build_disambiguation(options: list[str]) -> str:
    lines = ["I found a few options. Did you mean:"]
    for i, option in enumerate(options, start=1):
        lines.append(f"{i}. {option}")
    return "\n".join(lines)


def describe_script(script: Optional[ScriptDefinition], script_id: str) -> str:
    if script is None:
        return f"Script {script_id}"
    if script.description:
        return f"{script.name} ({script.description})"
    return script.name


def describe_action(verb: str) -> str:
    return f"Run the '{verb}' action"


def build_fallback(utterance: str) -> str:
    """General-assistant reply for utterances no script or action claims."""
    lower = utterance.lower()
    if _REMIND.search(lower):
        return REMINDER_MESSAGE
    if _GREETING.search(lower):
        return GREETING_MESSAGE
    return FALLBACK_MESSAGE


def build_failure(outcome: ExecutionOutcome, action: bool = False) -> str:
    prefix = "Action failed" if action else "Execution failed"
    return f"{prefix}: {outcome.error_message}"
