from __future__ import annotations

import html
import logging
from enum import Enum
from typing import Any, Callable, Optional

from .config import BlockRules
from .host import HostPage
from .media import silence_media
from .policy import UrlBlock
from .scheduler import Scheduler, TimerHandle

OVERLAY_ID = "shorts-blocker-overlay"
COUNTDOWN_ID = "shorts-blocker-countdown"
CANCEL_ID = "shorts-blocker-cancel"

_OVERLAY_STYLE = (
    "position: fixed; top: 0; left: 0; width: 100%; height: 100%; "
    "background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); "
    "display: flex; flex-direction: column; justify-content: center; align-items: center; "
    "font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; "
    "color: white; z-index: 2147483647;"
)


class OverlayState(Enum):
    HIDDEN = "hidden"
    SHOWING = "showing"
    COUNTING_DOWN = "counting_down"
    DISMISSED = "dismissed"
    REDIRECTED = "redirected"


class BlockOverlay:
    def __init__(
        self,
        page: HostPage,
        scheduler: Scheduler,
        rules: BlockRules,
        logger: logging.Logger,
        on_state_change: Optional[Callable[[OverlayState], None]] = None,
    ) -> None:
        self.page = page
        self.scheduler = scheduler
        self.rules = rules
        self.logger = logger.getChild("BlockOverlay")
        self._on_state_change = on_state_change
        self.state = OverlayState.HIDDEN
        self.block: Optional[UrlBlock] = None
        self.remaining = 0
        self._element: Any = None
        self._countdown: Any = None
        self._timer: Optional[TimerHandle] = None

    @property
    def active(self) -> bool:
        return self.state in (OverlayState.SHOWING, OverlayState.COUNTING_DOWN)

    def _set_state(self, state: OverlayState) -> None:
        self.state = state
        self.logger.debug("overlay -> %s", state.value)
        if self._on_state_change is not None:
            self._on_state_change(state)

    def show(self, block: UrlBlock) -> bool:
        if self.active or self.state is OverlayState.REDIRECTED:
            return False
        self.block = block
        self._set_state(OverlayState.SHOWING)
        try:
            silence_media(self.page, self.page.document_root(), self.logger)
            self._render(block)
        except Exception:
            self._discard_element()
            self.block = None
            self._set_state(OverlayState.HIDDEN)
            raise
        self.remaining = self.rules.countdown_seconds
        self._set_state(OverlayState.COUNTING_DOWN)
        self._timer = self.scheduler.call_later(1.0, self._tick)
        return True

    def _text(self, name: str, **values: Any) -> str:
        try:
            return getattr(self.rules, name).format(**values)
        except (KeyError, IndexError, ValueError, AttributeError, TypeError) as exc:
            self.logger.warning("unusable %s template (%s); using default text", name, exc.__class__.__name__)
            return getattr(BlockRules, name).format(**values)

    def _render(self, block: UrlBlock) -> None:
        label = html.escape(block.label)
        title = html.escape(self._text("overlay_title", label=block.label))
        message = html.escape(self._text("overlay_message", label=block.label, label_lower=block.label.lower()))
        markup = (
            f'<div id="{OVERLAY_ID}" role="alertdialog" aria-label="{label}" style="{_OVERLAY_STYLE}">'
            f'<h1 style="font-size: 36px; margin: 0 0 10px 0; font-weight: 300;">{title}</h1>'
            f'<p style="font-size: 18px; margin: 0 0 20px 0; opacity: 0.9;">{message}</p>'
            f'<p id="{COUNTDOWN_ID}" style="font-size: 16px; margin: 0; opacity: 0.7;">'
            f"{html.escape(self._countdown_text(self.rules.countdown_seconds))}</p>"
            f'<button id="{CANCEL_ID}" type="button">{html.escape(self.rules.overlay_cancel_text)}</button>'
            "</div>"
        )
        added = self.page.append_html(self.page.content_root(), markup)
        self._element = added[0] if added else None
        self._countdown = self.page.query(self._element, f"#{COUNTDOWN_ID}") if self._element is not None else None
        button = self.page.query(self._element, f"#{CANCEL_ID}") if self._element is not None else None
        if button is not None:
            self.page.add_click_listener(button, lambda _node: self.cancel())

    def _countdown_text(self, seconds: int) -> str:
        return self._text("overlay_countdown", seconds=seconds)

    def _tick(self) -> None:
        self._timer = None
        if self.state is not OverlayState.COUNTING_DOWN:
            return
        self.remaining -= 1
        if self._countdown is not None:
            self.page.set_text(self._countdown, self._countdown_text(max(self.remaining, 0)))
        if self.remaining <= 0:
            self._redirect()
            return
        self._timer = self.scheduler.call_later(1.0, self._tick)

    def _redirect(self) -> None:
        target = self.block.redirect_url if self.block else "/"
        self._set_state(OverlayState.REDIRECTED)
        self.logger.info("redirecting blocked %s page to %s", self.block.label if self.block else "?", target)
        self.page.replace_location(target)

    def _discard_element(self) -> None:
        if self._element is not None and self.page.is_attached(self._element):
            self.page.detach(self._element)
        self._element = None
        self._countdown = None

    def cancel(self) -> bool:
        if self.state is not OverlayState.COUNTING_DOWN:
            return False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._discard_element()
        self._set_state(OverlayState.DISMISSED)
        return True

    def reset(self) -> None:
        """Forget a finished overlay once the host has moved on to another document."""
        if self.active:
            return
        self._discard_element()
        self.block = None
        self._set_state(OverlayState.HIDDEN)


__all__ = ["OVERLAY_ID", "COUNTDOWN_ID", "CANCEL_ID", "OverlayState", "BlockOverlay"]
