from __future__ import annotations

import logging
from typing import Any, List

from .host import HostPage

MEDIA_SELECTOR = "video, audio"


def media_elements(page: HostPage, root: Any) -> List[Any]:
    found = []
    if page.tag_name(root) in ("video", "audio"):
        found.append(root)
    found.extend(page.query_all(root, MEDIA_SELECTOR))
    return found


def silence_media(page: HostPage, root: Any, logger: logging.Logger) -> int:
    """Stop every audio/video element under ``root`` before it leaves the page.

    Each element is paused, muted, rewound and stripped of its source. A
    failure on one element is logged and the rest are still processed.
    Returns how many elements went through all four steps.
    """
    try:
        elements = media_elements(page, root)
    except Exception as exc:
        logger.debug("media lookup failed (%s)", exc.__class__.__name__)
        return 0

    silenced = 0
    for element in elements:
        ok = True
        # Steps are independent: a player that refuses pause() can still be muted.
        for step in (page.pause_media, page.mute_media, page.reset_media, page.detach_media_source):
            try:
                step(element)
            except Exception as exc:
                ok = False
                logger.debug("media %s failed (%s: %s)", step.__name__, exc.__class__.__name__, exc)
        if ok:
            silenced += 1
    return silenced


__all__ = ["MEDIA_SELECTOR", "media_elements", "silence_media"]
