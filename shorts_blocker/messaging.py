from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from .config import STORE_KEYS, BlockSettings
from .logging_setup import get_logger
from .store import NAMESPACE, JsonSettingsStore
from .sync import GET_SETTINGS, SETTINGS_CHANGED, UPDATE_SETTINGS

Listener = Callable[[Dict[str, Any]], Any]


@dataclass
class TabEndpoint:
    tab_id: int
    url_getter: Callable[[], str]
    listener: Optional[Listener]


class MessageBus:
    """In-process stand-in for the runtime/tabs messaging channel.

    Page contexts talk to the background with ``send_message``; the
    background reaches pages with ``broadcast``. Nothing is shared between
    the two sides except the messages themselves.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = (logger or get_logger()).getChild("MessageBus")
        self._background: Optional[Callable[[Dict[str, Any]], Any]] = None
        self._tabs: Dict[int, TabEndpoint] = {}

    def set_background_handler(self, handler: Callable[[Dict[str, Any]], Any]) -> None:
        self._background = handler

    async def send_message(self, message: Dict[str, Any]) -> Any:
        if self._background is None:
            return None
        response = self._background(message)
        if inspect.isawaitable(response):
            response = await response
        return response

    def connect_tab(self, tab_id: int, url_getter: Callable[[], str], listener: Optional[Listener]) -> None:
        self._tabs[tab_id] = TabEndpoint(tab_id, url_getter, listener)

    def disconnect_tab(self, tab_id: int) -> None:
        self._tabs.pop(tab_id, None)

    def send_to_tab(self, tab_id: int, message: Dict[str, Any]) -> bool:
        endpoint = self._tabs.get(tab_id)
        if endpoint is None or endpoint.listener is None:
            return False
        try:
            endpoint.listener(message)
        except Exception as exc:
            # Pages without a live listener are expected; nothing to retry.
            self.logger.debug("tab %s delivery failed (%s)", tab_id, exc.__class__.__name__)
            return False
        return True

    def broadcast(self, message: Dict[str, Any], host_tokens: Iterable[str]) -> int:
        tokens = [t for t in host_tokens if t]
        delivered = 0
        for tab_id, endpoint in list(self._tabs.items()):
            try:
                url = endpoint.url_getter() or ""
            except Exception:
                continue
            if not any(token in url for token in tokens):
                continue
            if self.send_to_tab(tab_id, message):
                delivered += 1
        return delivered


class BackgroundService:
    """Background context: answers settings requests and fans out store changes."""

    def __init__(
        self,
        store: JsonSettingsStore,
        bus: MessageBus,
        host_tokens: Iterable[str],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.host_tokens = list(host_tokens)
        self.logger = (logger or get_logger()).getChild("Background")
        bus.set_background_handler(self.handle_message)
        store.add_change_listener(self._on_store_changed)

    def on_installed(self) -> None:
        seeded = self.store.seed_defaults()
        if seeded:
            self.logger.info("seeded default settings: %s", ", ".join(sorted(seeded)))

    def current_settings(self) -> Dict[str, bool]:
        return BlockSettings.from_mapping(self.store.get(STORE_KEYS.values())).to_store()

    def handle_message(self, message: Any) -> Any:
        if not isinstance(message, dict):
            return None
        action = message.get("action")
        if action == GET_SETTINGS:
            return self.current_settings()
        if action == UPDATE_SETTINGS:
            settings = message.get("settings")
            if not isinstance(settings, dict):
                return {"success": False}
            return {"success": bool(self.store.set(settings))}
        return None

    def _on_store_changed(self, changes: Dict[str, Dict[str, Any]], namespace: str) -> None:
        if namespace != NAMESPACE:
            return
        delivered = self.bus.broadcast({"action": SETTINGS_CHANGED, "changes": changes}, self.host_tokens)
        self.logger.debug("settingsChanged delivered to %d tab(s)", delivered)


__all__ = ["TabEndpoint", "MessageBus", "BackgroundService"]
