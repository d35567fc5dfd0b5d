from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .config import STORE_KEYS, BlockSettings, SettingsCache

SETTINGS_CHANGED = "settingsChanged"
GET_SETTINGS = "getSettings"
UPDATE_SETTINGS = "updateSettings"


class SettingsSyncBridge:
    """Single writer of the settings cache inside a page context."""

    def __init__(
        self,
        cache: SettingsCache,
        on_settings_changed: Callable[[BlockSettings, BlockSettings], Any],
        logger: logging.Logger,
    ) -> None:
        self.cache = cache
        self._on_settings_changed = on_settings_changed
        self.logger = logger.getChild("SettingsSync")
        self.update_count = 0

    def apply(self, values: Optional[Mapping[str, Any]], notify: bool = True) -> BlockSettings:
        """Merge store-keyed values into a fresh settings object and swap it in.

        Unknown keys and non-boolean values are ignored, flags not mentioned
        keep their cached value. Readers only ever see the old or the new
        object, never a half-applied mix.
        """
        previous = self.cache.current
        updated = BlockSettings.from_mapping(values, base=previous)
        if updated == previous:
            return previous
        self.cache.replace(updated)
        self.update_count += 1
        self.logger.info("settings updated: %s", _describe_diff(previous, updated))
        if notify:
            self._on_settings_changed(previous, updated)
        return updated

    def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, Mapping) or message.get("action") != SETTINGS_CHANGED:
            return None
        changes = message.get("changes")
        if not isinstance(changes, Mapping):
            return None
        values: Dict[str, Any] = {}
        watched = set(STORE_KEYS.values())
        for key, change in changes.items():
            if key not in watched or not isinstance(change, Mapping) or "newValue" not in change:
                continue
            values[key] = change["newValue"]
        if values:
            self.apply(values)
        return None


def _describe_diff(before: BlockSettings, after: BlockSettings) -> str:
    parts = []
    for name in STORE_KEYS:
        old, new = getattr(before, name), getattr(after, name)
        if old != new:
            parts.append(f"{name}={new}")
    return ", ".join(parts) or "no change"


__all__ = ["SETTINGS_CHANGED", "GET_SETTINGS", "UPDATE_SETTINGS", "SettingsSyncBridge"]
