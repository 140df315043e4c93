"""End-to-end tests for the dialogue controller.

Local scripts run in real sandbox processes; HTTP is mocked at the
``requests.Session`` boundary.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from otto.actions.dispatcher import ActionDispatcher
from otto.config import ActionConfig, AppConfig, MatcherConfig
from otto.conversation import responses
from otto.conversation.controller import DialogueController
from otto.logging_context import get_turn_id
from otto.repository.memory import InMemoryScriptRepository
from otto.schemas.script_schema import ActionDescription
from otto.schemas.turn_schema import ActiveSession, ErrorKind, ResponseKind
from tests.conftest import make_script


def ok_response(body):
    response = requests.Response()
    response.status_code = 200
    response.reason = "OK"
    response.encoding = "utf-8"
    response._content_consumed = True
    response._content = json.dumps(body).encode("utf-8")
    return response


@pytest.fixture
def http_session():
    return requests.Session()


@pytest.fixture
def dispatcher(http_session):
    return ActionDispatcher(ActionConfig(base_url="https://api.example.com"), session=http_session)


def weather_scripts(count=2):
    suffixes = ["today", "tonight", "tomorrow", "weekend"][:count]
    return [
        make_script(s, f"Weather {s.title()}", f"Forecast for {s}", triggers=[f"weather {s}"])
        for s in suffixes
    ]


class TestBmiConversation:
    def test_three_turn_collection(self, controller):
        first = controller.handle_turn("calculate my bmi")
        assert first.kind == ResponseKind.PROMPT
        assert first.response_text == "What is your weight in kg?"
        assert first.prompt_for_param == "weight"
        assert first.updated_session.missing_params == ["weight", "height"]
        assert first.state_trace == ["idle", "awaiting_parameter"]
        assert first.match.top.script_id == "bmi"

        second = controller.handle_turn("75", first.updated_session)
        assert second.kind == ResponseKind.PROMPT
        assert second.prompt_for_param == "height"
        assert second.updated_session.collected_params == {"weight": 75.0}
        assert second.updated_session.missing_params == ["height"]

        third = controller.handle_turn("180", second.updated_session)
        assert third.kind == ResponseKind.EXECUTION
        assert third.updated_session is None
        assert third.execution_outcome.succeeded
        assert third.execution_outcome.value == pytest.approx(23.148, abs=0.001)
        assert third.response_text.startswith("23.14")
        assert third.state_trace == ["awaiting_parameter", "executing", "idle"]

    def test_unreadable_value_reprompts_same_parameter(self, controller):
        session = ActiveSession(script_id="bmi", missing_params=["weight", "height"])
        response = controller.handle_turn("quite heavy", session)

        assert response.kind == ResponseKind.PROMPT
        assert response.prompt_for_param == "weight"
        assert response.response_text == (
            "Sorry, I couldn't read that as a number. What is your weight in kg?"
        )
        assert response.updated_session == session
        assert response.execution_outcome is None

    def test_value_with_surrounding_words(self, controller):
        session = ActiveSession(script_id="bmi", missing_params=["weight", "height"])
        response = controller.handle_turn("about 72.5 kg", session)
        assert response.updated_session.collected_params == {"weight": 72.5}

    @pytest.mark.parametrize("phrase", ["cancel", "  Start Over ", "never mind"])
    def test_reset_phrase_clears_session(self, controller, phrase):
        session = ActiveSession(script_id="bmi", missing_params=["weight", "height"])
        response = controller.handle_turn(phrase, session)

        assert response.kind == ResponseKind.RESET
        assert response.updated_session is None
        assert response.response_text == responses.RESET_MESSAGE

    def test_script_removed_mid_session(self, controller):
        session = ActiveSession(script_id="deleted", missing_params=["x"])
        response = controller.handle_turn("5", session)

        assert response.kind == ResponseKind.ERROR
        assert response.response_text == responses.LOST_TRACK_MESSAGE
        assert response.updated_session is None
        assert response.execution_outcome is None

    def test_ready_session_executes(self, controller):
        session = ActiveSession(script_id="bmi", collected_params={"weight": 75.0, "height": 180.0})
        response = controller.handle_turn("go", session)
        assert response.kind == ResponseKind.EXECUTION
        assert response.execution_outcome.value == pytest.approx(23.148, abs=0.001)


class TestIdleRouting:
    def test_empty_utterance_falls_back(self, controller):
        response = controller.handle_turn("")
        assert response.kind == ResponseKind.FALLBACK
        assert response.response_text == responses.FALLBACK_MESSAGE
        assert response.updated_session is None
        assert response.execution_outcome is None

    def test_unmatched_utterance(self, controller):
        response = controller.handle_turn("alpha beta")
        assert response.response_text == responses.FALLBACK_MESSAGE

    def test_greeting(self, controller):
        assert controller.handle_turn("hi there").response_text == responses.GREETING_MESSAGE

    def test_reminder(self, controller):
        response = controller.handle_turn("remind me to call mom")
        assert response.response_text == responses.REMINDER_MESSAGE

    def test_low_confidence_match_does_not_execute(self, app_config):
        script = make_script("plants", "Plants", "water plants daily")
        controller = DialogueController(InMemoryScriptRepository([script]), config=app_config)
        response = controller.handle_turn("watering")

        assert response.kind == ResponseKind.FALLBACK
        assert response.match.top.confidence == pytest.approx(0.68)
        assert response.execution_outcome is None

    def test_immediate_execution_when_nothing_missing(self, app_config):
        script = make_script(
            "tip", "Tip", triggers=["calculate tip"],
            parameters=[{"name": "amount", "type": "number"}],
            code="return round(amount * 0.15, 2)",
        )
        controller = DialogueController(InMemoryScriptRepository([script]), config=app_config)
        response = controller.handle_turn("calculate tip on 40")

        assert response.kind == ResponseKind.EXECUTION
        assert response.execution_outcome.value == pytest.approx(6.0)
        assert response.response_text == "6.0"
        assert response.updated_session is None
        assert response.state_trace == ["idle", "executing", "idle"]
        assert response.match.top.script_id == "tip"

    def test_script_error_reported(self, app_config):
        script = make_script("boom", "Boom", triggers=["break things"],
                             code="raise ValueError('bad input')")
        controller = DialogueController(InMemoryScriptRepository([script]), config=app_config)
        response = controller.handle_turn("break things")

        assert response.kind == ResponseKind.EXECUTION
        assert not response.execution_outcome.succeeded
        assert response.response_text == "Execution failed: bad input"

    def test_each_turn_gets_a_turn_id(self, controller):
        controller.handle_turn("hello")
        first = get_turn_id()
        controller.handle_turn("hello")
        assert get_turn_id().startswith("TURN-")
        assert get_turn_id() != first


class TestDisambiguation:
    def test_close_candidates_listed(self, app_config):
        repo = InMemoryScriptRepository(weather_scripts())
        controller = DialogueController(repo, config=app_config)
        response = controller.handle_turn("weather")

        assert response.kind == ResponseKind.DISAMBIGUATION
        assert response.response_text == (
            "I found a few options. Did you mean:\n"
            "1. Weather Today (Forecast for today)\n"
            "2. Weather Tonight (Forecast for tonight)"
        )
        assert response.updated_session is None
        assert response.execution_outcome is None
        assert response.match.needs_disambiguation

    def test_listing_is_capped(self, app_config):
        repo = InMemoryScriptRepository(weather_scripts(4))
        response = DialogueController(repo, config=app_config).handle_turn("weather")
        assert "3. " in response.response_text
        assert "4. " not in response.response_text
        assert len(response.match.candidates) == 4

    def test_action_candidates_listed(self, execution_config):
        config = AppConfig(
            matcher=MatcherConfig(disambiguation_gap=0.5), execution=execution_config
        )
        script = make_script("report", "Weather Report", triggers=["fetch weather report"])
        controller = DialogueController(InMemoryScriptRepository([script]), config=config)
        response = controller.handle_turn("fetch weather")

        assert response.kind == ResponseKind.DISAMBIGUATION
        assert response.response_text.endswith("2. Run the 'fetch' action")


class TestParameterCollection:
    def test_converges_after_one_turn_per_missing_parameter(self, app_config):
        script = make_script(
            "sum3", "Sum", triggers=["add three numbers"],
            parameters=[{"name": n, "type": "number"} for n in ("a", "b", "c")],
            code="return a + b + c",
        )
        controller = DialogueController(InMemoryScriptRepository([script]), config=app_config)

        response = controller.handle_turn("add three numbers")
        turns = 1
        for value in ("1", "2", "3"):
            assert response.kind == ResponseKind.PROMPT
            response = controller.handle_turn(value, response.updated_session)
            turns += 1

        assert turns == 4
        assert response.kind == ResponseKind.EXECUTION
        assert response.execution_outcome.value == pytest.approx(6.0)

    def test_string_and_date_values(self, app_config):
        script = make_script(
            "event", "Event", triggers=["schedule event"],
            parameters=[
                {"name": "title", "type": "string", "prompt": "What is it called?"},
                {"name": "when", "type": "date", "prompt": "When is it?"},
            ],
            code="return title + ' in ' + str(when.year)",
        )
        controller = DialogueController(InMemoryScriptRepository([script]), config=app_config)

        first = controller.handle_turn("schedule event")
        second = controller.handle_turn("Dentist", first.updated_session)
        assert second.response_text == "When is it?"
        bad = controller.handle_turn("whenever", second.updated_session)
        assert bad.prompt_for_param == "when"
        done = controller.handle_turn("2025-03-15", bad.updated_session)

        assert done.execution_outcome.succeeded
        assert done.response_text == "Dentist in 2025"

    def test_independent_sessions_do_not_interfere(self, controller):
        alice = controller.handle_turn("calculate my bmi").updated_session
        bob = controller.handle_turn("calculate my bmi").updated_session

        alice = controller.handle_turn("60", alice).updated_session
        bob = controller.handle_turn("90", bob).updated_session

        assert alice.collected_params == {"weight": 60.0}
        assert bob.collected_params == {"weight": 90.0}


class TestExternalActions:
    def test_action_verb_dispatches_registered_action(self, app_config, dispatcher, http_session):
        repo = InMemoryScriptRepository(actions=[
            ActionDescription(verb="fetch", endpoint="/status", method="GET",
                              params={"verbose": "1"}),
        ])
        controller = DialogueController(repo, config=app_config, dispatcher=dispatcher)
        with patch.object(http_session, "request", return_value=ok_response({"up": True})) as req:
            response = controller.handle_turn("fetch status")

        args, kwargs = req.call_args
        assert args == ("GET", "https://api.example.com/status")
        assert kwargs["params"] == {"verbose": "1"}
        assert response.kind == ResponseKind.ACTION
        assert response.execution_outcome.succeeded
        assert response.execution_outcome.status_code == 200
        assert json.loads(response.response_text) == {"up": True}
        assert response.state_trace == ["idle", "executing", "idle"]

    def test_unregistered_verb(self, app_config, dispatcher):
        controller = DialogueController(
            InMemoryScriptRepository(), config=app_config, dispatcher=dispatcher
        )
        response = controller.handle_turn("retrieve files")

        assert response.kind == ResponseKind.ACTION
        assert not response.execution_outcome.succeeded
        assert response.response_text == (
            "Action failed: No external action is registered for 'retrieve'"
        )

    def test_actions_not_configured(self, controller):
        response = controller.handle_turn("fetch orders")
        assert response.response_text == (
            f"Action failed: {responses.ACTIONS_NOT_CONFIGURED_MESSAGE}"
        )

    def test_external_action_script_posts_parameters(self, app_config, dispatcher, http_session):
        script = make_script(
            "order", "Order", triggers=["order a book"],
            parameters=[{"name": "item", "type": "string"}],
            endpoint="/orders",
        )
        controller = DialogueController(
            InMemoryScriptRepository([script]), config=app_config, dispatcher=dispatcher
        )
        with patch.object(http_session, "request", return_value=ok_response({"id": 9})) as req:
            response = controller.handle_turn('order a book "Dune"')

        args, kwargs = req.call_args
        assert args == ("POST", "https://api.example.com/orders")
        assert kwargs["json"] == {"item": "Dune"}
        assert response.kind == ResponseKind.EXECUTION
        assert response.execution_outcome.value == {"id": 9}

    def test_action_timeout_surfaces(self, app_config, dispatcher, http_session):
        repo = InMemoryScriptRepository(actions=[ActionDescription(verb="query", endpoint="/q")])
        controller = DialogueController(repo, config=app_config, dispatcher=dispatcher)
        with patch.object(http_session, "request", side_effect=requests.exceptions.Timeout()):
            response = controller.handle_turn("query inventory")

        assert response.execution_outcome.error_kind == ErrorKind.TIMEOUT
        assert response.execution_outcome.status_code == 408
        assert response.response_text == "Action failed: Request timeout"


class TestLiveness:
    def test_repository_failure_returns_error_response(self, app_config):
        repo = MagicMock()
        repo.list.side_effect = RuntimeError("database unavailable")
        response = DialogueController(repo, config=app_config).handle_turn("calculate my bmi")

        assert response.kind == ResponseKind.ERROR
        assert response.response_text == responses.INTERNAL_ERROR_MESSAGE
        assert response.updated_session is None

    def test_failure_mid_session_keeps_session(self, app_config):
        repo = MagicMock()
        repo.get_by_id.side_effect = RuntimeError("database unavailable")
        session = ActiveSession(script_id="bmi", missing_params=["weight"])
        response = DialogueController(repo, config=app_config).handle_turn("75", session)

        assert response.kind == ResponseKind.ERROR
        assert response.updated_session == session
