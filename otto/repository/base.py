"""Read-only contracts the core consumes from the script repository."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from otto.schemas.script_schema import ActionDescription, ScriptDefinition


class ScriptNotFoundError(LookupError):
    """Raised when a script ID does not resolve to a definition."""


@runtime_checkable
class ScriptRepository(Protocol):
    """Source of script definitions; the core never writes through it."""

    def list(self) -> list[ScriptDefinition]: ...

    def get_by_id(self, script_id: str) -> Optional[ScriptDefinition]: ...


@runtime_checkable
class ActionCatalog(Protocol):
    """Resolves a recognized action verb to a concrete request."""

    def get_action(self, verb: str) -> Optional[ActionDescription]: ...


def require_script(repository: ScriptRepository, script_id: str) -> ScriptDefinition:
    """Fetch a script or raise ScriptNotFoundError."""
    script = repository.get_by_id(script_id)
    if script is None:
        raise ScriptNotFoundError(f"Script {script_id} not found")
    return script
