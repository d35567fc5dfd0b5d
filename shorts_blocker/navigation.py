from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Optional

from .host import HostPage, MutationRecord, Observation

_WRAPPED_MARKER = "_shorts_blocker_wrapped"
_HISTORY_METHODS = ("push_state", "replace_state")


class NavigationWatcher:
    """Raise one navigation event per URL change, whichever way the page changed it.

    Two channels feed the same handler: wrappers around the history API
    (plus back/forward), and a whole-document mutation subscription that
    compares the current URL with the last one seen. Duplicate reports of the
    same URL are dropped, so both channels may fire freely.
    """

    def __init__(self, page: HostPage, on_navigate: Callable[[str], Any], logger: logging.Logger) -> None:
        self.page = page
        self._on_navigate = on_navigate
        self.logger = logger.getChild("NavigationWatcher")
        self.last_url: str = page.url
        self.dispatch_count = 0
        self._installed = False
        self._originals: Dict[str, Callable[..., Any]] = {}
        self._observation: Optional[Observation] = None

    @property
    def installed(self) -> bool:
        return self._installed

    def start(self) -> None:
        if self._installed:
            return
        self._installed = True
        self.last_url = self.page.url
        self._wrap_history()
        self.page.add_popstate_listener(self._on_popstate)
        self._observation = self.page.observe(self.page.document_root(), self._on_mutations, attributes=True)

    def stop(self) -> None:
        if not self._installed:
            return
        self._installed = False
        history = self.page.history
        for name, original in self._originals.items():
            setattr(history, name, original)
        if self._originals:
            setattr(history, _WRAPPED_MARKER, False)
        self._originals = {}
        self.page.remove_popstate_listener(self._on_popstate)
        if self._observation is not None:
            self._observation.disconnect()
            self._observation = None

    def _wrap_history(self) -> None:
        history = self.page.history
        if getattr(history, _WRAPPED_MARKER, False):
            self.logger.debug("history already wrapped; programmatic channel skipped")
            return
        for name in _HISTORY_METHODS:
            original = getattr(history, name)
            self._originals[name] = original
            setattr(history, name, self._wrap(original))
        setattr(history, _WRAPPED_MARKER, True)

    def _wrap(self, original: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(original)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            result = original(*args, **kwargs)
            self.check()
            return result

        return wrapper

    def _on_popstate(self) -> None:
        self.check()

    def _on_mutations(self, _records: List[MutationRecord], _observation: Observation) -> None:
        self.check()

    def check(self) -> bool:
        """Dispatch if the URL moved since the last dispatch. Returns True when dispatched."""
        current = self.page.url
        if current == self.last_url:
            return False
        self.last_url = current
        self.dispatch_count += 1
        self.logger.debug("navigation -> %s", current)
        self._on_navigate(current)
        return True


__all__ = ["NavigationWatcher"]
