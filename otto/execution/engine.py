"""
Time-bounded, process-isolated script execution.

Every run validates the source, starts a fresh sandbox process, and
races it against the configured deadline. A timed-out child is
terminated before the outcome is returned, so it can neither keep
running nor change the reported result.

Usage:
    engine = ExecutionEngine()
    outcome = engine.run("return weight / (height / 100) ** 2",
                         {"weight": 75.0, "height": 180.0})
    assert outcome.succeeded
"""

import logging
import math
import multiprocessing
import time
from datetime import date, datetime
from typing import Any, Optional

from otto.config import ExecutionConfig, settings
from otto.execution.sandbox import CodeValidationError, ensure_valid, sandbox_main, validate_code
from otto.intent.entity_extractor import parse_date
from otto.schemas.script_schema import LocalExecution, ParameterSpec, ParameterType, ScriptDefinition
from otto.schemas.turn_schema import ErrorKind, ExecutionOutcome

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Execution timeout"
INTERNAL_ERROR_MESSAGE = "Script execution failed unexpectedly"
# Stand-in for an unparsable date; scripts must guard against it
INVALID_DATE = None

_PROCESS_JOIN_SEC = 0.2


def coerce_value(value: Any, value_type: ParameterType) -> Any:
    """Lenient coercion; never raises, falls back to sentinel values."""
    if value_type == ParameterType.NUMBER:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        try:
            return float(str(value).strip())
        except ValueError:
            return math.nan

    if value_type == ParameterType.BOOLEAN:
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        return value

    if value_type == ParameterType.DATE:
        if isinstance(value, (datetime, date)):
            return value
        parsed = parse_date(str(value))
        return parsed if parsed is not None else INVALID_DATE

    return str(value)


def coerce_parameters(parameters: list[ParameterSpec], values: dict[str, Any]) -> dict[str, Any]:
    """Coerce every supplied declared parameter; undeclared values are dropped."""
    return {
        param.name: coerce_value(values[param.name], param.value_type)
        for param in parameters
        if param.name in values
    }


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class ExecutionEngine:
    """Runs validated script code in a separate, time-bounded process."""

    def __init__(self, config: Optional[ExecutionConfig] = None) -> None:
        self._config = config or settings.execution
        self._context = multiprocessing.get_context(self._config.start_method)

    @property
    def config(self) -> ExecutionConfig:
        return self._config

    def validate(self, code: str) -> tuple[bool, list[str]]:
        return validate_code(code)

    def run(
        self,
        code: str,
        params: dict[str, Any],
        timeout_ms: Optional[int] = None,
    ) -> ExecutionOutcome:
        """
        Execute ``code`` with ``params`` bound as globals.

        Never raises: validation failures, script errors, timeouts, and
        internal failures all come back as unsuccessful outcomes.
        """
        start = time.monotonic()
        if timeout_ms is None:
            timeout_ms = self._config.timeout_ms
        try:
            ensure_valid(code)
            return self._run_isolated(code, params, timeout_ms, start)
        except CodeValidationError as exc:
            logger.warning("Script rejected by validation: %s", exc.errors)
            return ExecutionOutcome.failure(
                str(exc), _elapsed_ms(start), ErrorKind.VALIDATION, errors=exc.errors
            )
        except Exception:
            logger.exception("Unexpected failure while running script")
            return ExecutionOutcome.failure(
                INTERNAL_ERROR_MESSAGE, _elapsed_ms(start), ErrorKind.INTERNAL
            )

    def execute_script(self, script: ScriptDefinition, params: dict[str, Any]) -> ExecutionOutcome:
        """Check required parameters, coerce them, and run a local script."""
        start = time.monotonic()
        try:
            if not isinstance(script.execution, LocalExecution):
                return ExecutionOutcome.failure(
                    f"Script '{script.name}' is not a local script",
                    _elapsed_ms(start),
                    ErrorKind.VALIDATION,
                )
            if not script.execution.code.strip():
                return ExecutionOutcome.failure(
                    "No code provided for local execution",
                    _elapsed_ms(start),
                    ErrorKind.VALIDATION,
                )

            missing = [p.name for p in script.parameters if p.required and p.name not in params]
            if missing:
                return ExecutionOutcome.failure(
                    f"Missing required parameters: {', '.join(missing)}",
                    _elapsed_ms(start),
                    ErrorKind.VALIDATION,
                    errors=[f"Missing required parameter: {name}" for name in missing],
                )

            typed = coerce_parameters(script.parameters, params)
        except Exception:
            logger.exception("Unexpected failure preparing script %s", script.id)
            return ExecutionOutcome.failure(
                INTERNAL_ERROR_MESSAGE, _elapsed_ms(start), ErrorKind.INTERNAL
            )

        logger.info("Executing script '%s' (%s)", script.name, script.id)
        return self.run(script.execution.code, typed)

    def _cpu_limit(self, timeout_ms: int) -> int:
        if self._config.cpu_limit_sec:
            return self._config.cpu_limit_sec
        return math.ceil(timeout_ms / 1000) + 1

    def _run_isolated(
        self, code: str, params: dict[str, Any], timeout_ms: int, start: float
    ) -> ExecutionOutcome:
        deadline = start + timeout_ms / 1000
        reader, writer = self._context.Pipe(duplex=False)
        process = self._context.Process(
            target=sandbox_main,
            args=(
                code, params, writer,
                self._cpu_limit(timeout_ms), self._config.memory_limit_mb,
            ),
            daemon=True,
        )
        try:
            process.start()
            writer.close()

            remaining = max(0.0, deadline - time.monotonic())
            if not reader.poll(remaining):
                elapsed = _elapsed_ms(start)
                logger.warning("Script timed out after %.0f ms", elapsed)
                return ExecutionOutcome.failure(TIMEOUT_MESSAGE, elapsed, ErrorKind.TIMEOUT)

            try:
                status, payload = reader.recv()
            except EOFError:
                status, payload = "error", "Script process exited without a result"
            elapsed = _elapsed_ms(start)
        finally:
            writer.close()
            reader.close()
            self._stop(process)

        if status == "ok":
            logger.info("Script succeeded in %.0f ms", elapsed)
            return ExecutionOutcome.success(payload, elapsed)
        if status == "rejected":
            logger.warning("Script rejected by sandbox: %s", payload)
            return ExecutionOutcome.failure(
                payload, elapsed, ErrorKind.VALIDATION, errors=[payload]
            )
        logger.info("Script raised: %s", payload)
        return ExecutionOutcome.failure(payload, elapsed, ErrorKind.EXECUTION)

    def _stop(self, process: Any) -> None:
        """Make sure the sandbox process is gone before returning."""
        if process.pid is None:
            return
        if process.is_alive():
            process.terminate()
            process.join(_PROCESS_JOIN_SEC)
        if process.is_alive():
            process.kill()
        process.join(_PROCESS_JOIN_SEC)
        if not process.is_alive():
            process.close()
