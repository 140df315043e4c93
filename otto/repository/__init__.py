from otto.repository.base import (
    ActionCatalog,
    ScriptNotFoundError,
    ScriptRepository,
    require_script,
)
from otto.repository.memory import InMemoryScriptRepository

__all__ = [
    "ScriptRepository",
    "ActionCatalog",
    "ScriptNotFoundError",
    "require_script",
    "InMemoryScriptRepository",
]
