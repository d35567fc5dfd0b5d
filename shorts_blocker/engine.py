from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from .change_watcher import ChangeWatcher
from .config import BlockRules, BlockSettings, SettingsCache
from .host import HostPage
from .messaging import MessageBus
from .navigation import NavigationWatcher
from .overlay import BlockOverlay, OverlayState
from .policy import ClassificationPolicy, UrlBlock
from .scheduler import Scheduler
from .sweeper import SweepResult, Sweeper
from .sync import GET_SETTINGS, SettingsSyncBridge


@dataclass
class EngineState:
    running: bool = False
    site: str = ""
    sweeps: int = 0
    removed_nodes: int = 0
    silenced_media: int = 0
    candidate_errors: int = 0
    navigations: int = 0
    blocked_urls: int = 0
    settings_updates: int = 0
    overlay_state: str = OverlayState.HIDDEN.value
    last_tick: float = 0.0
    last_error: str = ""


class ShortsBlockerEngine:
    """Process-lifetime owner of the filtering pipeline for one page context.

    ``start()`` waits for the initial settings round-trip, evaluates the
    current URL (overlay or full sweep) and only then subscribes to tree
    mutations, navigation and settings notifications. Settings changes later
    re-run the same evaluation; the watchers are never rebuilt.
    """

    def __init__(
        self,
        logger: logging.Logger,
        page: HostPage,
        scheduler: Scheduler,
        bus: MessageBus,
        rules: BlockRules,
        tab_id: int = 1,
        policy: Optional[ClassificationPolicy] = None,
    ) -> None:
        self.logger = logger.getChild("ShortsBlockerEngine")
        self.page = page
        self.scheduler = scheduler
        self.bus = bus
        self.rules = rules
        self.tab_id = tab_id
        self.cache = SettingsCache()
        self.policy = policy or ClassificationPolicy(rules, self.logger)
        self.sweeper = Sweeper(page, self.policy, self.cache, self.logger, on_error=self._set_error)
        self.sync = SettingsSyncBridge(self.cache, self._on_settings_changed, self.logger)
        self.overlay = BlockOverlay(page, scheduler, rules, self.logger, on_state_change=self._on_overlay_state)
        self.change_watcher = ChangeWatcher(page, scheduler, self._on_insertion_batch, self.logger, rules.debounce_ms)
        self.navigation = NavigationWatcher(page, self._on_navigate, self.logger)

        self._state = EngineState()
        self._started = False
        self._last_log: Dict[str, float] = {}

    @property
    def state(self) -> EngineState:
        return EngineState(**asdict(self._state))

    @property
    def settings(self) -> BlockSettings:
        return self.cache.current

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        try:
            response = await self.bus.send_message({"action": GET_SETTINGS})
        except Exception as exc:
            response = None
            self._set_error(f"settings: initial load failed ({exc.__class__.__name__})")
        # Defaults stay in place when the background did not answer.
        self.sync.apply(response if isinstance(response, dict) else None, notify=False)

        site = self.policy.site_for_host(self.page.hostname)
        self._state.running = True
        self._state.site = site or ""
        self.logger.info("engine started on %s (site=%s)", self.page.hostname or "?", site or "-")

        self._guard("initial evaluate", self.evaluate)
        self.change_watcher.start()
        self.navigation.start()
        self.bus.connect_tab(self.tab_id, lambda: self.page.url, self.sync.handle_message)

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.bus.disconnect_tab(self.tab_id)
        self.change_watcher.stop()
        self.navigation.stop()
        self._state.running = False

    def report_warning(self, message: str) -> None:
        if not message:
            return
        self._state.last_error = message
        self._state.last_tick = time.time()

    def evaluate(self) -> Optional[UrlBlock]:
        """Direct-URL check first; when the page itself is allowed, sweep it."""
        block = self.policy.classify_url(self.page.url, self.cache.current)
        if block is not None:
            self._state.blocked_urls += 1
            if self.overlay.show(block):
                self.logger.info("blocked direct navigation to %s (%s)", self.page.url, block.label)
            return block
        if self.overlay.active:
            # The flag was turned off, or the route left the blocked page.
            self.overlay.cancel()
        self.force_sweep()
        return None

    def force_sweep(self) -> SweepResult:
        return self._account(self.sweeper.sweep())

    def _account(self, result: SweepResult) -> SweepResult:
        if not result.skipped:
            self._state.sweeps += 1
        self._state.removed_nodes += result.removed
        self._state.silenced_media += result.silenced_media
        self._state.candidate_errors += result.errors
        self._state.last_tick = time.time()
        if result.removed:
            self.logger.debug("sweep removed %d of %d candidates", result.removed, result.candidates)
        return result

    def _on_insertion_batch(self, batch: List[Any]) -> None:
        self._guard("insertion sweep", lambda: self._account(self.sweeper.sweep_many(batch)))

    def _on_navigate(self, url: str) -> None:
        self._state.navigations += 1
        self._state.site = self.policy.site_for_host(self.page.hostname) or ""
        if self.overlay.state is OverlayState.DISMISSED:
            self.overlay.reset()
        self._guard("navigation", self.evaluate)

    def _on_settings_changed(self, _previous: BlockSettings, _current: BlockSettings) -> None:
        self._state.settings_updates += 1
        self._guard("settings change", self.evaluate)

    def _on_overlay_state(self, state: OverlayState) -> None:
        self._state.overlay_state = state.value
        if state is OverlayState.REDIRECTED:
            # The host unloads this document; nothing more to watch here.
            self.stop()

    def _guard(self, label: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except Exception as exc:
            self._set_error(f"{label}: {exc.__class__.__name__}: {exc}")
            return None

    def _set_error(self, message: str) -> None:
        now = time.time()
        last = self._last_log.get(message, 0.0)
        if now - last >= self.rules.log_rate_limit_seconds:
            self._last_log[message] = now
            self.logger.error(message)
        self._state.last_error = message
        self._state.last_tick = now


__all__ = ["ShortsBlockerEngine", "EngineState"]
