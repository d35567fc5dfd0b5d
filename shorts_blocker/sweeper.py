from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

from .config import SettingsCache
from .host import HostPage
from .media import silence_media
from .policy import BlockMatch, ClassificationPolicy


@dataclass
class SweepResult:
    candidates: int = 0
    removed: int = 0
    silenced_media: int = 0
    errors: int = 0
    skipped: bool = False
    matches: List[BlockMatch] = field(default_factory=list)

    def merge(self, other: "SweepResult") -> None:
        self.candidates += other.candidates
        self.removed += other.removed
        self.silenced_media += other.silenced_media
        self.errors += other.errors
        self.matches.extend(other.matches)
        self.skipped = self.skipped and other.skipped


class Sweeper:
    def __init__(
        self,
        page: HostPage,
        policy: ClassificationPolicy,
        cache: SettingsCache,
        logger: logging.Logger,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.page = page
        self.policy = policy
        self.cache = cache
        self.logger = logger.getChild("Sweeper")
        self._on_error = on_error

    def _candidates(self, root: Any, selector: str) -> List[Any]:
        found = self.page.query_all(root, selector)
        if root is not self.page.document_root() and self.page.matches(root, selector):
            found.insert(0, root)
        return found

    def sweep(self, root: Any = None) -> SweepResult:
        result = SweepResult()
        settings = self.cache.current
        site = self.policy.site_for_host(self.page.hostname)
        if not self.policy.is_site_active(site, settings):
            result.skipped = True
            return result
        selector = self.policy.candidate_selector(site)
        if not selector:
            result.skipped = True
            return result

        target = self.page.document_root() if root is None else root
        try:
            if not self.page.is_attached(target):
                return result
            candidates = self._candidates(target, selector)
        except Exception as exc:
            result.errors += 1
            self._report(f"sweep: candidate query failed ({exc.__class__.__name__}: {exc})")
            return result

        for node in candidates:
            result.candidates += 1
            try:
                # An ancestor removed earlier in this pass already took this node out.
                if not self.page.is_attached(node):
                    continue
                rule = self.policy.match(site, node, settings, self.page)
                if rule is None:
                    continue
                result.silenced_media += silence_media(self.page, node, self.logger)
                self.page.detach(node)
            except Exception as exc:
                result.errors += 1
                self._report(f"sweep: candidate failed ({exc.__class__.__name__}: {exc})")
                continue
            result.removed += 1
            result.matches.append(BlockMatch(node=node, rule=rule))
            self.logger.debug("removed <%s> (%s)", self.page.tag_name(node), rule.description or rule.flag)
        return result

    def sweep_many(self, roots: Iterable[Any]) -> SweepResult:
        total = SweepResult(skipped=True)
        for root in roots:
            total.merge(self.sweep(root))
        return total

    def _report(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)
        else:
            self.logger.debug(message)


__all__ = ["SweepResult", "Sweeper"]
