"""Script definition models and the on-the-wire script shape."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ParameterType(str, Enum):
    """Declared value type of a script parameter."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class ExecutionKind(str, Enum):
    """How a script is carried out once its parameters are collected."""

    LOCAL = "local"
    EXTERNAL_ACTION = "external_action"


# Legacy wire spellings still accepted on import
_KIND_ALIASES = {"mcp": ExecutionKind.EXTERNAL_ACTION}


class ParameterSpec(BaseModel):
    """A single input a script needs before it can run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    value_type: ParameterType = Field(alias="type")
    required: bool = True
    prompt: str = ""

    def prompt_text(self) -> str:
        """Prompt shown to the user, falling back to a generic question."""
        return self.prompt or f"What is the value for {self.name}?"


class LocalExecution(BaseModel):
    """Script body executed inside the sandbox."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ExecutionKind.LOCAL] = ExecutionKind.LOCAL
    code: str


class ExternalActionExecution(BaseModel):
    """Script carried out by POSTing its parameters to a remote endpoint."""

    model_config = ConfigDict(frozen=True)

    kind: Literal[ExecutionKind.EXTERNAL_ACTION] = ExecutionKind.EXTERNAL_ACTION
    endpoint: str = Field(min_length=1)
    method: str = "POST"


Execution = Annotated[
    Union[LocalExecution, ExternalActionExecution],
    Field(discriminator="kind"),
]


class ScriptDefinition(BaseModel):
    """
    Immutable stored automation definition.

    The execution payload is a tagged union, so a script always carries
    exactly one of ``code`` or ``action_endpoint``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    trigger_phrases: list[str] = Field(default_factory=list, alias="triggerPhrases")
    parameters: list[ParameterSpec] = Field(default_factory=list)
    execution: Execution
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("parameters")
    @classmethod
    def _unique_parameter_names(cls, value: list[ParameterSpec]) -> list[ParameterSpec]:
        seen: set[str] = set()
        for param in value:
            if param.name in seen:
                raise ValueError(f"Duplicate parameter name: {param.name}")
            seen.add(param.name)
        return value

    @property
    def execution_kind(self) -> ExecutionKind:
        return self.execution.kind

    @property
    def code(self) -> Optional[str]:
        if isinstance(self.execution, LocalExecution):
            return self.execution.code
        return None

    @property
    def action_endpoint(self) -> Optional[str]:
        if isinstance(self.execution, ExternalActionExecution):
            return self.execution.endpoint
        return None

    def get_parameter(self, name: str) -> Optional[ParameterSpec]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "ScriptDefinition":
        """
        Build a definition from the flat repository shape.

        Raises:
            ValueError: If the execution kind is unknown or the payload
                fields do not match it.
        """
        payload = dict(data)
        raw_kind = payload.pop("executionKind", None) or payload.pop("execution_kind", None)
        code = payload.pop("code", None)
        endpoint = payload.pop("actionEndpoint", None) or payload.pop("action_endpoint", None)

        if raw_kind is None:
            raise ValueError("Script is missing executionKind")
        kind_key = str(raw_kind).lower()
        if kind_key in _KIND_ALIASES:
            kind = _KIND_ALIASES[kind_key]
        else:
            try:
                kind = ExecutionKind(kind_key)
            except ValueError:
                raise ValueError(f"Unknown executionKind: {raw_kind!r}") from None

        if kind == ExecutionKind.LOCAL:
            if code is None:
                raise ValueError("Local scripts must define code")
            if endpoint:
                raise ValueError("Local scripts must not define actionEndpoint")
            payload["execution"] = LocalExecution(code=code)
        else:
            if not endpoint:
                raise ValueError("External-action scripts must define actionEndpoint")
            if code:
                raise ValueError("External-action scripts must not define code")
            payload["execution"] = ExternalActionExecution(endpoint=endpoint)

        return cls.model_validate(payload)

    def to_wire(self) -> dict[str, Any]:
        """Serialize back to the flat repository shape."""
        data = self.model_dump(
            mode="json", by_alias=True, exclude={"execution"}, exclude_none=True
        )
        data["executionKind"] = self.execution_kind.value
        if self.code is not None:
            data["code"] = self.code
        if self.action_endpoint is not None:
            data["actionEndpoint"] = self.action_endpoint
        return data


class ActionDescription(BaseModel):
    """Concrete request bound to an action verb by the repository side."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    verb: str
    endpoint: str
    method: str = "GET"
    body: Any = None
    params: Optional[dict[str, Any]] = None
    expected_shape: Optional[dict[str, Any]] = Field(default=None, alias="expectedShape")
    timeout_ms: Optional[int] = Field(default=None, alias="timeoutMs")
