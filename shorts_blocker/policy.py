from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from urllib.parse import urlsplit

import soupsieve

from .config import BlockRules, BlockSettings
from .host import HostPage
from .logging_setup import get_logger


class SignalType(Enum):
    DESCENDANT = "descendant"
    ATTRIBUTE = "attribute"
    PRIMARY_ROOT = "primary_root"
    VERTICAL_MEDIA = "vertical_media"


@dataclass(frozen=True)
class BlockRule:
    site: str
    kinds: Tuple[str, ...]
    flag: str
    signal: SignalType
    value: str = ""
    description: str = ""


@dataclass(frozen=True)
class UrlRule:
    site: str
    flag: str
    segments: Tuple[str, ...]
    query_marks: bool
    label: str
    redirect: str


@dataclass(frozen=True)
class UrlBlock:
    site: str
    label: str
    redirect_url: str
    rule: UrlRule


@dataclass(frozen=True)
class BlockMatch:
    node: Any
    rule: BlockRule


def node_kinds(page: HostPage, node: Any) -> FrozenSet[str]:
    tag = page.tag_name(node)
    if not tag:
        return frozenset()
    kinds = {tag}
    role = page.get_attribute(node, "role")
    if role:
        kinds.add(f"role={role.strip().lower()}")
    return frozenset(kinds)


def _host_matches(host: str, token: str) -> bool:
    token = token.lower().lstrip(".")
    return host == token or host.endswith("." + token)


class ClassificationPolicy:
    """Per-site rule table and the two pure predicates built on it.

    ``(site, kind) -> [BlockRule]`` is compiled once from ``BlockRules``.
    Evaluation never mutates the page or the settings, so the order in which
    rules for the same kind are tried cannot change the verdict.
    """

    def __init__(self, rules: BlockRules, logger: Optional[logging.Logger] = None) -> None:
        self.rules = rules
        self.logger = (logger or get_logger()).getChild("Policy")
        self.block_rules = self.parse_block_rules(rules.block_rules)
        self.url_rules = self.parse_url_rules(rules.url_rules)
        self._table: Dict[Tuple[str, str], List[BlockRule]] = {}
        for rule in self.block_rules:
            for kind in rule.kinds:
                self._table.setdefault((rule.site, kind), []).append(rule)
        self._site_flags: Dict[str, FrozenSet[str]] = {}
        for site in rules.site_hosts:
            flags = {r.flag for r in self.block_rules if r.site == site}
            flags.update(r.flag for r in self.url_rules if r.site == site)
            self._site_flags[site] = frozenset(flags)
        self._candidate_selector: Dict[str, str] = {}
        for site, selectors in rules.candidate_selectors.items():
            valid = []
            for selector in selectors:
                if self._is_valid_selector(selector):
                    valid.append(selector)
                else:
                    self.logger.warning("Skip invalid candidate selector for %s: %r", site, selector)
            if valid:
                self._candidate_selector[site] = ", ".join(valid)

    def parse_block_rules(self, raw_rules: List[Dict[str, Any]]) -> List[BlockRule]:
        flags = set(BlockSettings.flag_names())
        parsed: List[BlockRule] = []
        for raw in raw_rules:
            try:
                signal = SignalType(str(raw.get("signal", "")).lower())
            except ValueError:
                self.logger.warning("Skip rule with unknown signal: %r", raw.get("signal"))
                continue
            site = raw.get("site")
            flag = raw.get("flag")
            kinds = tuple(k.strip().lower() for k in raw.get("kinds") or [] if isinstance(k, str) and k.strip())
            value = raw.get("value") or ""
            if not isinstance(site, str) or site not in self.rules.site_hosts:
                self.logger.warning("Skip rule for unknown site: %r", site)
                continue
            if flag not in flags:
                self.logger.warning("Skip rule with unknown flag: %r", flag)
                continue
            if not kinds:
                continue
            if signal in (SignalType.DESCENDANT, SignalType.VERTICAL_MEDIA):
                value = value or ("video" if signal is SignalType.VERTICAL_MEDIA else "")
                if not self._is_valid_selector(value):
                    self.logger.warning("Skip rule with invalid selector: %r", value)
                    continue
            elif signal is SignalType.ATTRIBUTE and not value:
                continue
            parsed.append(
                BlockRule(
                    site=site,
                    kinds=kinds,
                    flag=flag,
                    signal=signal,
                    value=str(value),
                    description=str(raw.get("description") or ""),
                )
            )
        return parsed

    def parse_url_rules(self, raw_rules: List[Dict[str, Any]]) -> List[UrlRule]:
        flags = set(BlockSettings.flag_names())
        parsed: List[UrlRule] = []
        for raw in raw_rules:
            site = raw.get("site")
            flag = raw.get("flag")
            redirect = raw.get("redirect")
            if site not in self.rules.site_hosts or flag not in flags:
                self.logger.warning("Skip url rule: site=%r flag=%r", site, flag)
                continue
            if not isinstance(redirect, str) or not redirect:
                continue
            segments = tuple(
                s.strip().strip("/").lower() for s in raw.get("segments") or [] if isinstance(s, str) and s.strip("/ ")
            )
            parsed.append(
                UrlRule(
                    site=site,
                    flag=flag,
                    segments=segments,
                    query_marks=bool(raw.get("query_marks", False)),
                    label=str(raw.get("label") or site),
                    redirect=redirect,
                )
            )
        return parsed

    @staticmethod
    def _is_valid_selector(selector: str) -> bool:
        if not selector:
            return False
        try:
            soupsieve.compile(selector)
        except Exception:
            return False
        return True

    # -- site context -----------------------------------------------------

    def site_for_host(self, hostname: str) -> Optional[str]:
        host = (hostname or "").lower().rstrip(".")
        if not host:
            return None
        for site, tokens in self.rules.site_hosts.items():
            if any(_host_matches(host, token) for token in tokens):
                return site
        return None

    def site_flags(self, site: Optional[str]) -> FrozenSet[str]:
        return self._site_flags.get(site or "", frozenset())

    def is_site_active(self, site: Optional[str], settings: BlockSettings) -> bool:
        return any(settings.is_enabled(flag) for flag in self.site_flags(site))

    def candidate_selector(self, site: Optional[str]) -> Optional[str]:
        return self._candidate_selector.get(site or "")

    def rules_for(self, site: str, kinds: FrozenSet[str]) -> List[BlockRule]:
        out: List[BlockRule] = []
        for kind in sorted(kinds):
            out.extend(self._table.get((site, kind), ()))
        return out

    # -- node classification ----------------------------------------------

    def match(self, site: Optional[str], node: Any, settings: BlockSettings, page: HostPage) -> Optional[BlockRule]:
        """Return the first rule that blocks ``node``. May raise on a broken node."""
        if site is None or node is None:
            return None
        kinds = node_kinds(page, node)
        if not kinds:
            return None
        for rule in self.rules_for(site, kinds):
            if not settings.is_enabled(rule.flag):
                continue
            if self._signal_present(rule, node, page):
                return rule
        return None

    def classify(self, site: Optional[str], node: Any, settings: BlockSettings, page: HostPage) -> bool:
        try:
            return self.match(site, node, settings, page) is not None
        except Exception:
            return False

    def _signal_present(self, rule: BlockRule, node: Any, page: HostPage) -> bool:
        if rule.signal is SignalType.PRIMARY_ROOT:
            return True
        if rule.signal is SignalType.ATTRIBUTE:
            return page.has_attribute(node, rule.value)
        if rule.signal is SignalType.DESCENDANT:
            return page.query(node, rule.value) is not None
        if rule.signal is SignalType.VERTICAL_MEDIA:
            return self._has_vertical_media(node, rule.value, page)
        return False

    def _has_vertical_media(self, node: Any, selector: str, page: HostPage) -> bool:
        margin = self.rules.vertical_video_margin
        for media in page.query_all(node, selector):
            size = page.rendered_size(media)
            if not size:
                continue
            width, height = size
            if width > 0 and height > width * (1.0 + margin):
                return True
        return False

    # -- url classification -----------------------------------------------

    def classify_url(self, url: Any, settings: BlockSettings) -> Optional[UrlBlock]:
        if not isinstance(url, str) or not url.strip():
            return None
        try:
            parts = urlsplit(url.strip())
            host = (parts.hostname or "").lower()
        except ValueError:
            return None
        site = self.site_for_host(host)
        if site is None:
            return None
        for rule in self.url_rules:
            if rule.site != site or not settings.is_enabled(rule.flag):
                continue
            if _path_matches(parts.path or "/", parts.query, rule):
                return UrlBlock(site=site, label=rule.label, redirect_url=rule.redirect, rule=rule)
        return None

    def is_blocked_url(self, url: Any, settings: BlockSettings) -> bool:
        return self.classify_url(url, settings) is not None


def _path_matches(path: str, query: str, rule: UrlRule) -> bool:
    if not rule.segments:
        return True
    segments = path.lower().split("/")
    for index, segment in enumerate(segments):
        if segment not in rule.segments:
            continue
        # "/shorts/<id>" and "/reels/" both carry a child position after the marker.
        if index + 1 < len(segments):
            return True
        if rule.query_marks and query:
            return True
    return False


__all__ = [
    "SignalType",
    "BlockRule",
    "UrlRule",
    "UrlBlock",
    "BlockMatch",
    "ClassificationPolicy",
    "node_kinds",
]
