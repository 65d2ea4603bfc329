"""
JSON state file holding the last known snapshot of every managed group.

Layout::

    {"version": 1, "resources": {"<key>": {"id": "...", "name": "...", ...}}}

Writes go to a temporary file that replaces the state file, so a crash never
leaves a half-written state behind.
"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from .logging_utils import get_logger
from .models import GroupState, state_from_dict, state_to_dict

log = get_logger(__name__)

STATE_VERSION = 1


class StateError(Exception):
    """Raised when the state file cannot be read."""
    pass


class StateStore:
    """In-memory view of the state file; call :meth:`save` to persist."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._resources: Dict[str, GroupState] = {}

    @classmethod
    def load(cls, path: Path) -> "StateStore":
        store = cls(path)
        if not store.path.exists():
            log.debug("state file %s does not exist yet", store.path)
            return store
        try:
            with open(store.path, "r", encoding="utf-8") as fh:
                data = json.load(fh) or {}
        except (OSError, json.JSONDecodeError) as exc:
            raise StateError(f"Unable to read state file {store.path}: {exc}") from exc

        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StateError(f"Unsupported state version {version} in {store.path}")
        try:
            for key, raw in (data.get("resources") or {}).items():
                store._resources[key] = state_from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise StateError(f"Corrupt state file {store.path}: {exc}") from exc
        log.debug("loaded %d resource(s) from %s", len(store._resources), store.path)
        return store

    def get(self, key: str) -> Optional[GroupState]:
        return self._resources.get(key)

    def put(self, key: str, state: GroupState) -> None:
        self._resources[key] = state

    def remove(self, key: str) -> None:
        self._resources.pop(key, None)

    def keys(self):
        return list(self._resources)

    def items(self) -> Iterator[Tuple[str, GroupState]]:
        return iter(list(self._resources.items()))

    def __contains__(self, key: str) -> bool:
        return key in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def save(self) -> None:
        payload = {
            "version": STATE_VERSION,
            "resources": {k: state_to_dict(v) for k, v in sorted(self._resources.items())},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".state-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, sort_keys=True)
                fh.write("\n")
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        log.debug("saved %d resource(s) to %s", len(self._resources), self.path)
