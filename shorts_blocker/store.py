from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .config import SETTINGS_FILE, BlockSettings, load_json_object
from .logging_setup import get_logger

ChangeListener = Callable[[Dict[str, Dict[str, Any]], str], None]

NAMESPACE = "local"


class JsonSettingsStore:
    """Key/value settings store persisted as one JSON object.

    Mirrors the extension storage contract: ``get`` fills documented defaults
    for unset keys, ``set`` acknowledges with True, and listeners receive a
    ``{key: {"oldValue", "newValue"}}`` map only for values that changed.
    """

    def __init__(
        self,
        path: Optional[str] = SETTINGS_FILE,
        logger: Optional[logging.Logger] = None,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.path = path
        self.logger = (logger or get_logger()).getChild("SettingsStore")
        self.defaults: Dict[str, Any] = dict(defaults if defaults is not None else BlockSettings.default_store_values())
        self._values: Dict[str, Any] = {}
        self._listeners: List[ChangeListener] = []
        if path:
            raw = load_json_object(path, os.path.basename(path))
            if raw is not None:
                self._values = dict(raw)

    def get(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        wanted = list(keys) if keys is not None else sorted(set(self.defaults) | set(self._values))
        out: Dict[str, Any] = {}
        for key in wanted:
            if key in self._values:
                out[key] = self._values[key]
            elif key in self.defaults:
                out[key] = self.defaults[key]
        return out

    def is_set(self, key: str) -> bool:
        return key in self._values

    def set(self, partial: Mapping[str, Any]) -> bool:
        changes: Dict[str, Dict[str, Any]] = {}
        for key, value in partial.items():
            old = self._values.get(key)
            if key in self._values and old == value:
                continue
            change: Dict[str, Any] = {"newValue": value}
            if key in self._values:
                change["oldValue"] = old
            changes[key] = change
            self._values[key] = value
        if not changes:
            return True
        self.save()
        self._notify(changes)
        return True

    def seed_defaults(self) -> Dict[str, Any]:
        """Install-time hook: write defaults for keys that were never set."""
        missing = {key: value for key, value in self.defaults.items() if key not in self._values}
        if missing:
            self.set(missing)
        return missing

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, changes: Dict[str, Dict[str, Any]]) -> None:
        for listener in list(self._listeners):
            try:
                listener(dict(changes), NAMESPACE)
            except Exception as exc:
                self.logger.warning("change listener failed (%s: %s)", exc.__class__.__name__, exc)

    def save(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2, ensure_ascii=False)


__all__ = ["NAMESPACE", "JsonSettingsStore"]
