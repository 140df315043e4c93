"""Per-turn models: sessions, match candidates, and execution outcomes."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ActiveSession(BaseModel):
    """
    In-flight parameter collection for one conversation.

    Frozen: every turn returns a new session rather than mutating the
    caller's copy, so sessions can be stored and replayed as plain data.
    """

    model_config = ConfigDict(frozen=True)

    script_id: str
    collected_params: dict[str, Any] = Field(default_factory=dict)
    missing_params: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _missing_not_collected(self) -> "ActiveSession":
        overlap = set(self.missing_params) & set(self.collected_params)
        if overlap:
            raise ValueError(f"Parameters both collected and missing: {sorted(overlap)}")
        return self

    @property
    def next_param(self) -> Optional[str]:
        return self.missing_params[0] if self.missing_params else None

    @property
    def is_ready(self) -> bool:
        return not self.missing_params

    def with_value(self, name: str, value: Any) -> "ActiveSession":
        """Record the value for the head of the queue and pop it."""
        if name != self.next_param:
            raise ValueError(f"Expected a value for '{self.next_param}', got '{name}'")
        return self.model_copy(update={
            "collected_params": {**self.collected_params, name: value},
            "missing_params": list(self.missing_params[1:]),
        })


class CandidateKind(str, Enum):
    SCRIPT = "script"
    ACTION = "action"


class MatchCandidate(BaseModel):
    """One scored interpretation of an utterance."""

    model_config = ConfigDict(frozen=True)

    kind: CandidateKind
    confidence: float = Field(ge=0.0, le=1.0)
    script_id: Optional[str] = None
    action_verb: Optional[str] = None

    @model_validator(mode="after")
    def _reference_matches_kind(self) -> "MatchCandidate":
        if self.kind == CandidateKind.SCRIPT and not self.script_id:
            raise ValueError("Script candidates need a script_id")
        if self.kind == CandidateKind.ACTION and not self.action_verb:
            raise ValueError("Action candidates need an action_verb")
        return self


class MatchResult(BaseModel):
    """Ranked candidates for one utterance."""

    candidates: list[MatchCandidate] = Field(default_factory=list)
    top: Optional[MatchCandidate] = None
    needs_disambiguation: bool = False


class ErrorKind(str, Enum):
    """Failure taxonomy shared by execution and dispatch outcomes."""

    VALIDATION = "validation"
    EXECUTION = "execution"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    HTTP = "http"
    INTERNAL = "internal"


class ExecutionOutcome(BaseModel):
    """Result of running a script or an external action for a turn."""

    succeeded: bool
    value: Any = None
    error_message: Optional[str] = None
    elapsed_ms: float = 0.0
    error_kind: Optional[ErrorKind] = None
    errors: list[str] = Field(default_factory=list)
    status_code: Optional[int] = None

    @classmethod
    def success(cls, value: Any, elapsed_ms: float, **kwargs: Any) -> "ExecutionOutcome":
        return cls(succeeded=True, value=value, elapsed_ms=elapsed_ms, **kwargs)

    @classmethod
    def failure(
        cls,
        message: str,
        elapsed_ms: float,
        kind: ErrorKind,
        errors: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> "ExecutionOutcome":
        return cls(
            succeeded=False,
            error_message=message,
            elapsed_ms=elapsed_ms,
            error_kind=kind,
            errors=errors or [],
            **kwargs,
        )

    @property
    def timed_out(self) -> bool:
        return self.error_kind == ErrorKind.TIMEOUT


class ActionResult(BaseModel):
    """Normalized response of an external-action dispatch."""

    succeeded: bool
    data: Any = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    elapsed_ms: float = 0.0

    def to_outcome(self) -> ExecutionOutcome:
        if self.succeeded:
            return ExecutionOutcome.success(
                self.data, self.elapsed_ms, status_code=self.status_code
            )
        return ExecutionOutcome.failure(
            self.error_message or "Request failed",
            self.elapsed_ms,
            self.error_kind or ErrorKind.INTERNAL,
            status_code=self.status_code,
        )


class ResponseKind(str, Enum):
    PROMPT = "prompt"
    EXECUTION = "execution"
    ACTION = "action"
    DISAMBIGUATION = "disambiguation"
    FALLBACK = "fallback"
    RESET = "reset"
    ERROR = "error"


class TurnResponse(BaseModel):
    """Everything the presentation layer needs after one turn."""

    response_text: str
    kind: ResponseKind
    updated_session: Optional[ActiveSession] = None
    prompt_for_param: Optional[str] = None
    execution_outcome: Optional[ExecutionOutcome] = None
    match: Optional[MatchResult] = None
    state_trace: list[str] = Field(default_factory=list)
