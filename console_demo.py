"""
Offline console demo: chat with the automation core in a terminal.

Loads a handful of sample scripts into an in-memory repository and feeds
every line you type through ``DialogueController.handle_turn``. External
actions are only dispatched when ``ACTION_BASE_URL`` is configured.

Usage:
    python console_demo.py
    python console_demo.py --scenario bmi
    python console_demo.py --scenario currency
"""

import argparse
from typing import Optional

from otto.actions.dispatcher import ActionDispatcher
from otto.config import settings
from otto.conversation.controller import DialogueController
from otto.repository.memory import InMemoryScriptRepository
from otto.schemas.script_schema import ActionDescription, ScriptDefinition
from otto.schemas.turn_schema import ActiveSession, TurnResponse

BLUE = "\033[94m"
GREEN = "\033[92m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

SAMPLE_SCRIPTS: list[dict] = [
    {
        "id": "bmi",
        "name": "BMI Calculator",
        "description": "Calculate body mass index from weight and height",
        "tags": ["health"],
        "triggerPhrases": ["calculate my bmi", "body mass index"],
        "parameters": [
            {"name": "weight", "type": "number", "prompt": "What is your weight in kg?"},
            {"name": "height", "type": "number", "prompt": "What is your height in cm?"},
        ],
        "executionKind": "local",
        "code": "return round(weight / (height / 100) ** 2, 2)",
    },
    {
        "id": "currency",
        "name": "Currency Converter",
        "description": "Convert US dollars into another currency",
        "tags": ["finance"],
        "triggerPhrases": ["convert currency", "convert dollars"],
        "parameters": [
            {"name": "amount", "type": "number", "prompt": "How many dollars?"},
            {"name": "target_currency", "type": "string",
             "prompt": "Which currency (e.g. EUR, GBP, JPY)?"},
        ],
        "executionKind": "local",
        "code": (
            'rates = {"USD": 1.0, "EUR": 0.92, "GBP": 0.79, "JPY": 149.5}\n'
            "code = target_currency.strip().upper()\n"
            "if code not in rates:\n"
            '    raise ValueError("Unknown currency: " + code)\n'
            "return round(amount * rates[code], 2)"
        ),
    },
    {
        "id": "countdown",
        "name": "Days Until",
        "description": "Count the days until a date",
        "tags": ["calendar"],
        "triggerPhrases": ["how many days until", "days until"],
        "parameters": [
            {"name": "deadline", "type": "date", "prompt": "Which date (YYYY-MM-DD)?"},
        ],
        "executionKind": "local",
        "code": "return (deadline - clock.now().replace(tzinfo=None)).days + 1",
    },
]

SAMPLE_ACTIONS = [
    ActionDescription(verb="fetch", endpoint="/status", method="GET",
                      expected_shape={"type": "object"}),
]


def build_repository() -> InMemoryScriptRepository:
    return InMemoryScriptRepository(
        scripts=[ScriptDefinition.from_wire(s) for s in SAMPLE_SCRIPTS],
        actions=SAMPLE_ACTIONS,
    )


class ConsoleSession:
    """Runs a conversation against the sample repository in the terminal."""

    SCENARIOS: dict[str, list[str]] = {
        "bmi": ["calculate my bmi", "75", "180"],
        "currency": ['convert 120 dollars to "EUR"'],
        "reset": ["calculate my bmi", "cancel", "hello"],
    }

    MAX_INPUT_LENGTH = 500

    def __init__(self) -> None:
        dispatcher = ActionDispatcher() if settings.action.base_url else None
        self.controller = DialogueController(build_repository(), dispatcher=dispatcher)
        self.session: Optional[ActiveSession] = None

    def assistant_say(self, text: str, error: bool = False) -> None:
        colour = RED if error else GREEN
        print(f"{colour}{BOLD}[{settings.assistant_name}]{RESET} {colour}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def process(self, text: str) -> TurnResponse:
        response = self.controller.handle_turn(text[: self.MAX_INPUT_LENGTH], self.session)
        self.session = response.updated_session
        failed = bool(response.execution_outcome and not response.execution_outcome.succeeded)
        self.assistant_say(response.response_text, error=failed)
        self.system_log(f"{response.kind.value}: {' -> '.join(response.state_trace)}")
        if response.execution_outcome is not None:
            self.system_log(f"elapsed {response.execution_outcome.elapsed_ms:.0f} ms")
        return response

    def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        print(f"\n{BOLD}{'=' * 60}\n  AUTOMATION CORE - Scenario: {scenario}\n{'=' * 60}{RESET}\n")
        for step in steps:
            print(f"\n{BLUE}[You] {RESET}{step}")
            self.process(step)
        print(f"\n{BOLD}  Scenario '{scenario}' complete.{RESET}")

    def run(self) -> None:
        print(f"\n{BOLD}{'=' * 60}\n  AUTOMATION CORE - Console Demo\n  Type 'quit' to exit\n"
              f"{'=' * 60}{RESET}\n")
        self.assistant_say("Hi! Try 'calculate my bmi' or 'convert 100 dollars to \"GBP\"'.")

        while True:
            try:
                user_input = input(f"\n{BLUE}[You] {RESET}").strip()
            except (EOFError, KeyboardInterrupt):
                print(f"\n{DIM}Session ended.{RESET}")
                return
            if not user_input:
                continue
            if user_input.lower() in ("quit", "exit", "q"):
                print(f"\n{DIM}Session ended.{RESET}")
                return
            self.process(user_input)


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    args = parser.parse_args()

    session = ConsoleSession()
    if args.scenario:
        session.run_scenario(args.scenario)
    else:
        session.run()


if __name__ == "__main__":
    main()
