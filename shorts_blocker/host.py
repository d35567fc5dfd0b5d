from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import soupsieve
from bs4 import BeautifulSoup, Tag

from .scheduler import Scheduler

Size = Tuple[float, float]
MutationCallback = Callable[[List["MutationRecord"], "Observation"], None]

CHILD_LIST = "childList"
ATTRIBUTES = "attributes"
CHARACTER_DATA = "characterData"


@dataclass
class MutationRecord:
    type: str
    target: Any
    added_nodes: List[Any] = field(default_factory=list)
    removed_nodes: List[Any] = field(default_factory=list)
    attribute_name: Optional[str] = None


class Observation:
    def __init__(self, page: "SoupPage", root: Any, callback: MutationCallback, attributes: bool) -> None:
        self._page = page
        self.root = root
        self.callback = callback
        self.attributes = attributes
        self.connected = True
        self._pending: List[MutationRecord] = []
        self._scheduled = False

    def wants(self, record: MutationRecord) -> bool:
        if record.type != CHILD_LIST and not self.attributes:
            return False
        return self._page.contains(self.root, record.target)

    def enqueue(self, record: MutationRecord) -> None:
        self._pending.append(record)
        if not self._scheduled:
            self._scheduled = True
            self._page.scheduler.call_soon(self._deliver)

    def _deliver(self) -> None:
        self._scheduled = False
        records, self._pending = self._pending, []
        if self.connected and records:
            self.callback(records, self)

    def disconnect(self) -> None:
        self.connected = False
        self._pending = []
        self._page._forget(self)


class HostPage:
    """Host tree interface: everything the engine is allowed to do to a page.

    Implementations own the document. The engine only inspects nodes, detaches
    matches, toggles media state and appends its overlay.
    """

    history: "History"

    @property
    def url(self) -> str:
        raise NotImplementedError

    @property
    def hostname(self) -> str:
        try:
            return (urlsplit(self.url).hostname or "").lower()
        except ValueError:
            return ""

    def document_root(self) -> Any:
        raise NotImplementedError

    def content_root(self) -> Any:
        raise NotImplementedError

    def query_all(self, root: Any, selector: str) -> List[Any]:
        raise NotImplementedError

    def query(self, root: Any, selector: str) -> Optional[Any]:
        found = self.query_all(root, selector)
        return found[0] if found else None

    def matches(self, node: Any, selector: str) -> bool:
        raise NotImplementedError

    def tag_name(self, node: Any) -> Optional[str]:
        raise NotImplementedError

    def get_attribute(self, node: Any, name: str) -> Optional[str]:
        raise NotImplementedError

    def has_attribute(self, node: Any, name: str) -> bool:
        return self.get_attribute(node, name) is not None

    def is_attached(self, node: Any) -> bool:
        raise NotImplementedError

    def rendered_size(self, node: Any) -> Optional[Size]:
        raise NotImplementedError

    def detach(self, node: Any) -> None:
        raise NotImplementedError

    def append_html(self, parent: Any, html: str) -> List[Any]:
        raise NotImplementedError

    def set_attribute(self, node: Any, name: str, value: str) -> None:
        raise NotImplementedError

    def remove_attribute(self, node: Any, name: str) -> None:
        raise NotImplementedError

    def set_text(self, node: Any, text: str) -> None:
        raise NotImplementedError

    def observe(self, root: Any, callback: MutationCallback, attributes: bool = False) -> Observation:
        raise NotImplementedError

    def add_click_listener(self, node: Any, callback: Callable[[Any], None]) -> None:
        raise NotImplementedError

    def add_popstate_listener(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def remove_popstate_listener(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def replace_location(self, url: str) -> None:
        raise NotImplementedError

    def pause_media(self, node: Any) -> None:
        raise NotImplementedError

    def mute_media(self, node: Any) -> None:
        raise NotImplementedError

    def reset_media(self, node: Any) -> None:
        raise NotImplementedError

    def detach_media_source(self, node: Any) -> None:
        raise NotImplementedError

    def is_media_playing(self, node: Any) -> bool:
        raise NotImplementedError


class History:
    def __init__(self, page: "SoupPage") -> None:
        self._page = page
        self.entries: List[Tuple[Any, str]] = [(None, page.url)]
        self.index = 0

    @property
    def state(self) -> Any:
        return self.entries[self.index][0]

    def push_state(self, state: Any, title: str = "", url: Optional[str] = None) -> None:
        target = self._page.resolve(url) if url is not None else self._page.url
        del self.entries[self.index + 1:]
        self.entries.append((state, target))
        self.index = len(self.entries) - 1
        self._page._url = target

    def replace_state(self, state: Any, title: str = "", url: Optional[str] = None) -> None:
        target = self._page.resolve(url) if url is not None else self._page.url
        self.entries[self.index] = (state, target)
        self._page._url = target

    def back(self) -> None:
        self.go(-1)

    def forward(self) -> None:
        self.go(1)

    def go(self, delta: int) -> None:
        target = self.index + int(delta)
        if delta == 0 or target < 0 or target >= len(self.entries):
            return
        self.index = target
        self._page._url = self.entries[target][1]
        self._page._dispatch_popstate()


class SoupPage(HostPage):
    """Live page backed by a BeautifulSoup tree.

    Structural edits go through this object so observers receive batched
    ``MutationRecord`` lists, delivered through the scheduler the way a
    browser delivers mutation observer callbacks after the current task.
    """

    def __init__(self, html: str, url: str, scheduler: Scheduler, parser: str = "html.parser") -> None:
        self.scheduler = scheduler
        self.soup = BeautifulSoup(html or "", parser)
        self._ensure_skeleton()
        self._url = url
        self.history = History(self)
        self.navigations: List[str] = []
        self._observations: List[Observation] = []
        self._popstate_listeners: List[Callable[[], None]] = []
        self._click_listeners: Dict[int, Tuple[Any, List[Callable[[Any], None]]]] = {}

    def _ensure_skeleton(self) -> None:
        if self.soup.html is None:
            html_tag = self.soup.new_tag("html")
            for child in list(self.soup.contents):
                html_tag.append(child.extract())
            self.soup.append(html_tag)
        if self.soup.body is None:
            body = self.soup.new_tag("body")
            html_tag = self.soup.html
            for child in list(html_tag.contents):
                if getattr(child, "name", None) != "head":
                    body.append(child.extract())
            html_tag.append(body)

    # -- location ---------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    def resolve(self, url: str) -> str:
        return urljoin(self._url, url)

    def set_url(self, url: str) -> None:
        """Change the address without the history API, as some routers do."""
        self._url = self.resolve(url)

    def replace_location(self, url: str) -> None:
        target = self.resolve(url)
        self.navigations.append(target)
        self.history.entries[self.history.index] = (None, target)
        self._url = target

    def add_popstate_listener(self, callback: Callable[[], None]) -> None:
        self._popstate_listeners.append(callback)

    def remove_popstate_listener(self, callback: Callable[[], None]) -> None:
        try:
            self._popstate_listeners.remove(callback)
        except ValueError:
            pass

    def _dispatch_popstate(self) -> None:
        for callback in list(self._popstate_listeners):
            callback()

    # -- queries ----------------------------------------------------------

    def document_root(self) -> Any:
        return self.soup

    def content_root(self) -> Any:
        return self.soup.body or self.soup

    def query_all(self, root: Any, selector: str) -> List[Any]:
        if not isinstance(root, Tag):
            return []
        return list(root.select(selector))

    def query(self, root: Any, selector: str) -> Optional[Any]:
        if not isinstance(root, Tag):
            return None
        return root.select_one(selector)

    def matches(self, node: Any, selector: str) -> bool:
        if not isinstance(node, Tag) or isinstance(node, BeautifulSoup):
            return False
        return bool(soupsieve.match(selector, node))

    def tag_name(self, node: Any) -> Optional[str]:
        if not isinstance(node, Tag) or isinstance(node, BeautifulSoup):
            return None
        return node.name.lower() if node.name else None

    def get_attribute(self, node: Any, name: str) -> Optional[str]:
        if not isinstance(node, Tag):
            return None
        value = node.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def contains(self, root: Any, node: Any) -> bool:
        if node is root:
            return True
        return any(parent is root for parent in getattr(node, "parents", ()))

    def is_attached(self, node: Any) -> bool:
        return self.contains(self.soup, node)

    def rendered_size(self, node: Any) -> Optional[Size]:
        width = _parse_px(self.get_attribute(node, "data-rendered-width") or self.get_attribute(node, "width"))
        height = _parse_px(self.get_attribute(node, "data-rendered-height") or self.get_attribute(node, "height"))
        if width is None or height is None:
            return None
        return width, height

    def serialize(self) -> str:
        return str(self.soup)

    # -- mutation ---------------------------------------------------------

    def observe(self, root: Any, callback: MutationCallback, attributes: bool = False) -> Observation:
        observation = Observation(self, root, callback, attributes)
        self._observations.append(observation)
        return observation

    def _forget(self, observation: Observation) -> None:
        try:
            self._observations.remove(observation)
        except ValueError:
            pass

    def _record(self, record: MutationRecord) -> None:
        for observation in list(self._observations):
            if observation.connected and observation.wants(record):
                observation.enqueue(record)

    def detach(self, node: Any) -> None:
        parent = getattr(node, "parent", None)
        if parent is None:
            return
        node.extract()
        self._record(MutationRecord(CHILD_LIST, parent, removed_nodes=[node]))

    def append_html(self, parent: Any, html: str) -> List[Any]:
        fragment = BeautifulSoup(html, "html.parser")
        added = []
        for node in list(fragment.contents):
            parent.append(node.extract())
            added.append(node)
        if added:
            self._record(MutationRecord(CHILD_LIST, parent, added_nodes=list(added)))
        return added

    def set_attribute(self, node: Any, name: str, value: str) -> None:
        node[name] = value
        self._record(MutationRecord(ATTRIBUTES, node, attribute_name=name))

    def remove_attribute(self, node: Any, name: str) -> None:
        if name not in node.attrs:
            return
        del node[name]
        self._record(MutationRecord(ATTRIBUTES, node, attribute_name=name))

    def set_text(self, node: Any, text: str) -> None:
        node.string = text
        self._record(MutationRecord(CHARACTER_DATA, node))

    # -- events -----------------------------------------------------------

    def add_click_listener(self, node: Any, callback: Callable[[Any], None]) -> None:
        self._click_listeners.setdefault(id(node), (node, []))[1].append(callback)

    def click(self, node: Any) -> None:
        current = node
        while current is not None:
            entry = self._click_listeners.get(id(current))
            if entry is not None and entry[0] is current:
                for callback in list(entry[1]):
                    callback(node)
            current = getattr(current, "parent", None)

    # -- media ------------------------------------------------------------

    def pause_media(self, node: Any) -> None:
        self.set_attribute(node, "data-playing", "false")
        self.remove_attribute(node, "autoplay")

    def mute_media(self, node: Any) -> None:
        self.set_attribute(node, "muted", "")

    def reset_media(self, node: Any) -> None:
        self.set_attribute(node, "data-current-time", "0")

    def detach_media_source(self, node: Any) -> None:
        self.remove_attribute(node, "src")
        for source in list(node.find_all("source")):
            self.detach(source)

    def is_media_playing(self, node: Any) -> bool:
        if self.get_attribute(node, "data-playing") == "true":
            return True
        return self.has_attribute(node, "autoplay") and self.get_attribute(node, "data-playing") != "false"


def _parse_px(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    text = value.strip().lower()
    if text.endswith("px"):
        text = text[:-2]
    try:
        out = float(text)
    except ValueError:
        return None
    return out if out >= 0 else None


__all__ = [
    "CHILD_LIST",
    "ATTRIBUTES",
    "CHARACTER_DATA",
    "MutationRecord",
    "Observation",
    "HostPage",
    "History",
    "SoupPage",
]
