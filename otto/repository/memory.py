"""
In-memory script repository.

Reference implementation of the repository contract, used by tests and
embedding applications that keep their scripts in JSON. Production
deployments plug in their own persistence behind the same interface.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from otto.schemas.script_schema import ActionDescription, ScriptDefinition

logger = logging.getLogger(__name__)


class InMemoryScriptRepository:
    """Thread-safe, last-write-wins store of script definitions and actions."""

    def __init__(
        self,
        scripts: Optional[Iterable[ScriptDefinition]] = None,
        actions: Optional[Iterable[ActionDescription]] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._scripts: dict[str, ScriptDefinition] = {}
        self._actions: dict[str, ActionDescription] = {}
        for script in scripts or []:
            self.add(script)
        for action in actions or []:
            self.register_action(action)

    # ------------------------------------------------------------------ #
    # Read contract
    # ------------------------------------------------------------------ #

    def list(self) -> list[ScriptDefinition]:
        """Return all scripts ordered by name."""
        with self._lock:
            return sorted(self._scripts.values(), key=lambda s: s.name.lower())

    def get_by_id(self, script_id: str) -> Optional[ScriptDefinition]:
        with self._lock:
            return self._scripts.get(script_id)

    def get_action(self, verb: str) -> Optional[ActionDescription]:
        with self._lock:
            return self._actions.get(verb.lower())

    def search(self, query: str) -> list[ScriptDefinition]:
        """Case-insensitive search across name, description, and tags."""
        needle = query.lower().strip()
        return [
            s for s in self.list()
            if needle in s.name.lower()
            or needle in s.description.lower()
            or any(needle in tag.lower() for tag in s.tags)
        ]

    # ------------------------------------------------------------------ #
    # Management (owned by the embedding application)
    # ------------------------------------------------------------------ #

    def add(self, script: ScriptDefinition) -> ScriptDefinition:
        """Store a script, replacing any previous version with the same ID."""
        now = datetime.now(timezone.utc)
        stamped = script.model_copy(update={
            "created_at": script.created_at or now,
            "updated_at": script.updated_at or now,
        })
        with self._lock:
            self._scripts[stamped.id] = stamped
        logger.debug("Script stored: %s (%s)", stamped.id, stamped.name)
        return stamped

    def create(self, **fields: Any) -> ScriptDefinition:
        """Create a script from wire-shaped fields with a fresh ID."""
        data = {"id": str(uuid.uuid4()), **fields}
        return self.add(ScriptDefinition.from_wire(data))

    def remove(self, script_id: str) -> bool:
        with self._lock:
            removed = self._scripts.pop(script_id, None) is not None
        if removed:
            logger.debug("Script removed: %s", script_id)
        return removed

    def register_action(self, action: ActionDescription) -> None:
        with self._lock:
            self._actions[action.verb.lower()] = action
        logger.debug("Action registered: %s -> %s", action.verb, action.endpoint)

    # ------------------------------------------------------------------ #
    # JSON import / export in the wire shape
    # ------------------------------------------------------------------ #

    def export_json(self) -> str:
        return json.dumps([s.to_wire() for s in self.list()], indent=2)

    def load_json(self, payload: str) -> int:
        """Import scripts from a JSON array; invalid entries are skipped.

        Returns:
            Number of scripts imported.
        """
        entries = json.loads(payload)
        if not isinstance(entries, list):
            raise ValueError("Script import payload must be a JSON array")

        imported = 0
        for entry in entries:
            try:
                self.add(ScriptDefinition.from_wire(entry))
            except (ValidationError, ValueError, TypeError) as exc:
                logger.warning(
                    "Skipping invalid script %r: %s",
                    entry.get("name") if isinstance(entry, dict) else entry, exc,
                )
                continue
            imported += 1
        logger.info("Imported %d of %d scripts", imported, len(entries))
        return imported
