"""Shared test fixtures and helpers."""

from typing import Any, Optional

import pytest

from otto.config import AppConfig, ExecutionConfig
from otto.conversation.controller import DialogueController
from otto.execution.engine import ExecutionEngine
from otto.intent.entity_extractor import EntityExtractor
from otto.intent.matcher import Matcher
from otto.repository.memory import InMemoryScriptRepository
from otto.schemas.script_schema import ScriptDefinition

BMI_CODE = "return weight / (height / 100) ** 2"


def make_script(
    script_id: str = "script-1",
    name: str = "Test Script",
    description: str = "",
    tags: Optional[list[str]] = None,
    triggers: Optional[list[str]] = None,
    parameters: Optional[list[dict[str, Any]]] = None,
    code: Optional[str] = "return 42",
    endpoint: Optional[str] = None,
) -> ScriptDefinition:
    """Build a script from the wire shape, local unless an endpoint is given."""
    data: dict[str, Any] = {
        "id": script_id,
        "name": name,
        "description": description,
        "tags": tags or [],
        "triggerPhrases": triggers or [],
        "parameters": parameters or [],
    }
    if endpoint:
        data.update(executionKind="external_action", actionEndpoint=endpoint)
    else:
        data.update(executionKind="local", code=code)
    return ScriptDefinition.from_wire(data)


def make_bmi_script() -> ScriptDefinition:
    return make_script(
        script_id="bmi",
        name="BMI Calculator",
        description="Calculate body mass index",
        tags=["health"],
        triggers=["calculate my bmi"],
        parameters=[
            {"name": "weight", "type": "number", "prompt": "What is your weight in kg?"},
            {"name": "height", "type": "number", "prompt": "What is your height in cm?"},
        ],
        code=BMI_CODE,
    )


@pytest.fixture
def execution_config():
    return ExecutionConfig(timeout_ms=5000, start_method="spawn", cpu_limit_sec=0)


@pytest.fixture
def engine(execution_config):
    return ExecutionEngine(execution_config)


@pytest.fixture
def matcher():
    return Matcher()


@pytest.fixture
def extractor():
    return EntityExtractor()


@pytest.fixture
def bmi_script():
    return make_bmi_script()


@pytest.fixture
def repository(bmi_script):
    return InMemoryScriptRepository(scripts=[bmi_script])


@pytest.fixture
def app_config(execution_config):
    return AppConfig(execution=execution_config)


@pytest.fixture
def controller(repository, app_config):
    return DialogueController(repository, config=app_config)
