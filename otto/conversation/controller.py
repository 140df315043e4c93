"""
Dialogue controller: turns one utterance plus the current session into a
response and the next session.

The controller is stateless between turns. Everything it needs to resume
a conversation travels in the ``ActiveSession`` it returns, and the
repository is only ever read, so independent conversations can share one
controller instance.

Turn flow:
    AwaitingParameter -> treat the utterance as the value of the next
                         missing parameter, then prompt again or execute
    Idle              -> match, then disambiguate, execute, start
                         collecting parameters, dispatch an action, or
                         fall back to a general reply
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from otto.actions.dispatcher import ActionDispatcher
from otto.config import AppConfig, settings
from otto.conversation import responses
from otto.conversation.state_machine import DialogueStateMachine, TurnTrigger
from otto.execution.engine import ExecutionEngine
from otto.intent.entity_extractor import EntityExtractor, coerce_value
from otto.intent.matcher import Matcher
from otto.logging_context import get_turn_logger, new_turn_id, set_turn_id
from otto.repository.base import ActionCatalog, ScriptRepository
from otto.schemas.script_schema import (
    ExternalActionExecution,
    LocalExecution,
    ScriptDefinition,
)
from otto.schemas.turn_schema import (
    ActiveSession,
    CandidateKind,
    ErrorKind,
    ExecutionOutcome,
    MatchResult,
    ResponseKind,
    TurnResponse,
)
from otto.utils import format_result, normalize_utterance

logger = get_turn_logger(__name__)


def _json_safe(params: dict[str, Any]) -> dict[str, Any]:
    return {
        name: value.isoformat() if isinstance(value, date) else value
        for name, value in params.items()
    }


class DialogueController:
    """Routes each turn to matching, parameter collection, or execution."""

    def __init__(
        self,
        repository: ScriptRepository,
        config: Optional[AppConfig] = None,
        matcher: Optional[Matcher] = None,
        extractor: Optional[EntityExtractor] = None,
        engine: Optional[ExecutionEngine] = None,
        dispatcher: Optional[ActionDispatcher] = None,
        actions: Optional[ActionCatalog] = None,
    ) -> None:
        self._config = config or settings
        self._repository = repository
        self._matcher = matcher or Matcher(self._config.matcher)
        self._extractor = extractor or EntityExtractor()
        self._engine = engine or ExecutionEngine(self._config.execution)
        self._dispatcher = dispatcher
        if actions is None and isinstance(repository, ActionCatalog):
            actions = repository
        self._actions = actions
        self._reset_phrases = {
            normalize_utterance(p) for p in self._config.dialogue.reset_phrases
        }

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    def handle_turn(
        self, utterance: str, session: Optional[ActiveSession] = None
    ) -> TurnResponse:
        """
        Process one user utterance.

        Never raises: an unexpected failure produces an error response
        and hands the caller's session back unchanged so the
        conversation can continue.
        """
        set_turn_id(new_turn_id())
        machine = DialogueStateMachine.for_session(session)
        try:
            if session is not None:
                return self._continue_session(utterance or "", session, machine)
            return self._start_turn(utterance or "", machine)
        except Exception:
            logger.exception("Unhandled failure while processing turn")
            return TurnResponse(
                response_text=responses.INTERNAL_ERROR_MESSAGE,
                kind=ResponseKind.ERROR,
                updated_session=session,
                state_trace=machine.get_state_trace(),
            )

    # ------------------------------------------------------------------ #
    # AwaitingParameter
    # ------------------------------------------------------------------ #

    def _continue_session(
        self, utterance: str, session: ActiveSession, machine: DialogueStateMachine
    ) -> TurnResponse:
        if normalize_utterance(utterance) in self._reset_phrases:
            machine.transition(TurnTrigger.RESET)
            logger.info("Session for script %s reset by user", session.script_id)
            return TurnResponse(
                response_text=responses.RESET_MESSAGE,
                kind=ResponseKind.RESET,
                state_trace=machine.get_state_trace(),
            )

        script = self._repository.get_by_id(session.script_id)
        name = session.next_param
        param = script.get_parameter(name) if script and name else None
        if script is None or (name is not None and param is None):
            machine.transition(TurnTrigger.SCRIPT_MISSING)
            logger.warning("Script %s vanished mid-session", session.script_id)
            return TurnResponse(
                response_text=responses.LOST_TRACK_MESSAGE,
                kind=ResponseKind.ERROR,
                state_trace=machine.get_state_trace(),
            )

        if param is None:
            machine.transition(TurnTrigger.SESSION_READY)
            return self._execute(script, session.collected_params, machine)

        extracted = self._extractor.extract(utterance, [param])
        ok, value = coerce_value(extracted.get(param.name, utterance), param.value_type)
        if not ok:
            machine.transition(TurnTrigger.VALUE_REJECTED)
            logger.info("Could not read %r as %s", param.name, param.value_type.value)
            return self._prompt(
                responses.build_reprompt(param), param.name, session, machine
            )

        session = session.with_value(param.name, value)
        if session.is_ready:
            machine.transition(TurnTrigger.LAST_VALUE_ACCEPTED)
            return self._execute(script, session.collected_params, machine)

        machine.transition(TurnTrigger.VALUE_ACCEPTED)
        next_param = script.get_parameter(session.next_param)
        return self._prompt(
            responses.build_parameter_prompt(next_param), next_param.name, session, machine
        )

    # ------------------------------------------------------------------ #
    # Idle
    # ------------------------------------------------------------------ #

    def _start_turn(self, utterance: str, machine: DialogueStateMachine) -> TurnResponse:
        scripts = {script.id: script for script in self._repository.list()}
        result = self._matcher.match(utterance, scripts.values())
        top = result.top

        if result.needs_disambiguation:
            machine.transition(TurnTrigger.AMBIGUOUS)
            return TurnResponse(
                response_text=self._disambiguation_text(result, scripts),
                kind=ResponseKind.DISAMBIGUATION,
                match=result,
                state_trace=machine.get_state_trace(),
            )

        threshold = self._config.matcher.auto_execute_threshold
        if top is not None and top.kind == CandidateKind.SCRIPT and top.confidence >= threshold:
            script = scripts.get(top.script_id) or self._repository.get_by_id(top.script_id)
            if script is not None:
                return self._start_script(utterance, script, result, machine)
            logger.warning("Matched script %s is no longer available", top.script_id)

        elif top is not None and top.kind == CandidateKind.ACTION:
            machine.transition(TurnTrigger.ACTION_RECOGNIZED)
            outcome = self._dispatch_action(top.action_verb)
            machine.transition(TurnTrigger.EXECUTION_FINISHED)
            return TurnResponse(
                response_text=self._outcome_text(outcome, action=True),
                kind=ResponseKind.ACTION,
                execution_outcome=outcome,
                match=result,
                state_trace=machine.get_state_trace(),
            )

        machine.transition(TurnTrigger.NO_MATCH)
        return TurnResponse(
            response_text=responses.build_fallback(utterance),
            kind=ResponseKind.FALLBACK,
            match=result,
            state_trace=machine.get_state_trace(),
        )

    def _start_script(
        self,
        utterance: str,
        script: ScriptDefinition,
        result: MatchResult,
        machine: DialogueStateMachine,
    ) -> TurnResponse:
        collected = self._extractor.extract(utterance, script.parameters)
        missing = self._extractor.missing_required(script.parameters, collected)
        logger.info(
            "Matched script '%s' (%.2f); %d parameter(s) still missing",
            script.name, result.top.confidence, len(missing),
        )

        if not missing:
            machine.transition(TurnTrigger.MATCHED_READY)
            response = self._execute(script, collected, machine)
            return response.model_copy(update={"match": result})

        machine.transition(TurnTrigger.MATCHED_NEEDS_INPUT)
        session = ActiveSession(
            script_id=script.id,
            collected_params=collected,
            missing_params=[p.name for p in missing],
        )
        response = self._prompt(
            responses.build_parameter_prompt(missing[0]), missing[0].name, session, machine
        )
        return response.model_copy(update={"match": result})

    def _disambiguation_text(
        self, result: MatchResult, scripts: dict[str, ScriptDefinition]
    ) -> str:
        options = []
        for candidate in result.candidates[: self._config.matcher.max_disambiguation_options]:
            if candidate.kind == CandidateKind.ACTION:
                options.append(responses.describe_action(candidate.action_verb))
            else:
                script = scripts.get(candidate.script_id)
                options.append(responses.describe_script(script, candidate.script_id))
        return responses.build_disambiguation(options)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def _execute(
        self,
        script: ScriptDefinition,
        params: dict[str, Any],
        machine: DialogueStateMachine,
    ) -> TurnResponse:
        """Run a ready script; the session always ends here."""
        if isinstance(script.execution, LocalExecution):
            outcome = self._engine.execute_script(script, params)
        elif isinstance(script.execution, ExternalActionExecution):
            outcome = self._run_external(script.execution, params)
        else:
            raise TypeError(f"Unsupported execution kind: {script.execution_kind}")

        machine.transition(TurnTrigger.EXECUTION_FINISHED)
        return TurnResponse(
            response_text=self._outcome_text(outcome),
            kind=ResponseKind.EXECUTION,
            execution_outcome=outcome,
            state_trace=machine.get_state_trace(),
        )

    def _run_external(
        self, execution: ExternalActionExecution, params: dict[str, Any]
    ) -> ExecutionOutcome:
        if self._dispatcher is None:
            return ExecutionOutcome.failure(
                responses.ACTIONS_NOT_CONFIGURED_MESSAGE, 0.0, ErrorKind.INTERNAL
            )
        result = self._dispatcher.dispatch(
            execution.endpoint, method=execution.method, body=_json_safe(params)
        )
        return result.to_outcome()

    def _dispatch_action(self, verb: str) -> ExecutionOutcome:
        if self._dispatcher is None:
            return ExecutionOutcome.failure(
                responses.ACTIONS_NOT_CONFIGURED_MESSAGE, 0.0, ErrorKind.INTERNAL
            )
        description = self._actions.get_action(verb) if self._actions else None
        if description is None:
            logger.info("No action registered for verb %r", verb)
            return ExecutionOutcome.failure(
                f"No external action is registered for '{verb}'",
                0.0,
                ErrorKind.VALIDATION,
            )
        result = self._dispatcher.dispatch(
            description.endpoint,
            method=description.method,
            body=description.body,
            timeout_ms=description.timeout_ms,
            params=description.params,
            expected_shape=description.expected_shape,
        )
        return result.to_outcome()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _outcome_text(outcome: ExecutionOutcome, action: bool = False) -> str:
        if outcome.succeeded:
            return format_result(outcome.value)
        return responses.build_failure(outcome, action=action)

    @staticmethod
    def _prompt(
        text: str,
        param_name: str,
        session: ActiveSession,
        machine: DialogueStateMachine,
    ) -> TurnResponse:
        return TurnResponse(
            response_text=text,
            kind=ResponseKind.PROMPT,
            updated_session=session,
            prompt_for_param=param_name,
            state_trace=machine.get_state_trace(),
        )
