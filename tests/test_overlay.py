import logging

import pytest

from shorts_blocker.config import BlockRules, BlockSettings
from shorts_blocker.host import SoupPage
from shorts_blocker.overlay import CANCEL_ID, COUNTDOWN_ID, OVERLAY_ID, BlockOverlay, OverlayState
from shorts_blocker.policy import ClassificationPolicy
from shorts_blocker.scheduler import ManualScheduler

SHORTS_URL = "https://www.youtube.com/shorts/abc"
PLAYER = '<html><body><div id="player"><video id="v" src="clip.mp4" data-playing="true"></video></div></body></html>'


def make_overlay(rules=None, url=SHORTS_URL, settings=None):
    rules = rules or BlockRules()
    scheduler = ManualScheduler()
    page = SoupPage(PLAYER, url, scheduler)
    block = ClassificationPolicy(rules).classify_url(url, settings or BlockSettings())
    states = []
    overlay = BlockOverlay(page, scheduler, rules, logging.getLogger("test"), on_state_change=states.append)
    return scheduler, page, overlay, block, states


def find(page, element_id):
    return page.query(page.document_root(), f"#{element_id}")


def test_show_silences_media_and_renders_countdown():
    scheduler, page, overlay, block, states = make_overlay()

    assert overlay.show(block) is True

    assert states == [OverlayState.SHOWING, OverlayState.COUNTING_DOWN]
    assert overlay.active is True
    video = find(page, "v")
    assert page.is_media_playing(video) is False
    assert video.get("src") is None
    # The page is kept underneath the overlay.
    assert find(page, "player") is not None
    element = find(page, OVERLAY_ID)
    assert element.find("h1").get_text() == "YouTube Shorts Blocked"
    assert "youtube shorts page" in element.find("p").get_text()
    assert find(page, COUNTDOWN_ID).get_text() == "Redirecting in 5 seconds..."


def test_countdown_redirects_with_replace():
    scheduler, page, overlay, block, states = make_overlay()
    overlay.show(block)

    scheduler.advance(1.0)
    assert overlay.remaining == 4
    assert find(page, COUNTDOWN_ID).get_text() == "Redirecting in 4 seconds..."

    scheduler.advance(3.0)
    assert overlay.remaining == 1
    assert page.navigations == []

    scheduler.advance(1.0)
    assert overlay.state is OverlayState.REDIRECTED
    assert page.navigations == ["https://www.youtube.com/"]
    assert page.url == "https://www.youtube.com/"
    assert len(page.history.entries) == 1
    assert find(page, OVERLAY_ID) is not None
    assert overlay.show(block) is False


def test_cancel_button_dismisses_without_redirect():
    scheduler, page, overlay, block, states = make_overlay()
    overlay.show(block)
    scheduler.advance(2.0)

    page.click(find(page, CANCEL_ID))

    assert overlay.state is OverlayState.DISMISSED
    assert find(page, OVERLAY_ID) is None
    scheduler.advance(10.0)
    assert page.navigations == []
    assert page.url == SHORTS_URL
    assert overlay.cancel() is False


def test_show_is_noop_while_active_and_allowed_after_dismiss():
    scheduler, page, overlay, block, states = make_overlay()
    overlay.show(block)
    assert overlay.show(block) is False
    assert len(page.query_all(page.document_root(), f"#{OVERLAY_ID}")) == 1

    overlay.cancel()
    assert overlay.show(block) is True
    assert overlay.state is OverlayState.COUNTING_DOWN
    assert len(page.query_all(page.document_root(), f"#{OVERLAY_ID}")) == 1


def test_reset_returns_to_hidden():
    scheduler, page, overlay, block, states = make_overlay()
    overlay.reset()
    assert overlay.state is OverlayState.HIDDEN

    overlay.show(block)
    overlay.reset()
    assert overlay.state is OverlayState.COUNTING_DOWN

    overlay.cancel()
    overlay.reset()
    assert overlay.state is OverlayState.HIDDEN
    assert overlay.block is None
    assert states[-1] is OverlayState.HIDDEN


def test_custom_countdown_and_whole_site_redirect():
    rules = BlockRules(countdown_seconds=2)
    scheduler, page, overlay, block, states = make_overlay(
        rules=rules,
        url="https://www.instagram.com/explore/",
        settings=BlockSettings(block_instagram_completely=True),
    )
    overlay.show(block)
    assert find(page, OVERLAY_ID).find("h1").get_text() == "Instagram Blocked"

    scheduler.advance(2.0)
    assert overlay.state is OverlayState.REDIRECTED
    assert page.navigations == ["https://www.google.com/"]


def test_unusable_templates_fall_back_and_still_count_down():
    rules = BlockRules(overlay_title="{title} blocked", overlay_countdown="Leaving in {0}", countdown_seconds=2)
    scheduler, page, overlay, block, states = make_overlay(rules=rules)

    assert overlay.show(block) is True

    assert states == [OverlayState.SHOWING, OverlayState.COUNTING_DOWN]
    assert find(page, OVERLAY_ID).find("h1").get_text() == "YouTube Shorts Blocked"
    assert find(page, COUNTDOWN_ID).get_text() == "Redirecting in 2 seconds..."

    scheduler.advance(1.0)
    assert find(page, COUNTDOWN_ID).get_text() == "Redirecting in 1 seconds..."
    scheduler.advance(1.0)
    assert overlay.state is OverlayState.REDIRECTED
    assert page.navigations == ["https://www.youtube.com/"]


class BrokenAppendPage(SoupPage):
    fail = True

    def append_html(self, parent, html):
        if self.fail:
            raise RuntimeError("host refused the node")
        return super().append_html(parent, html)


def test_render_failure_returns_to_hidden():
    rules = BlockRules()
    scheduler = ManualScheduler()
    page = BrokenAppendPage(PLAYER, SHORTS_URL, scheduler)
    block = ClassificationPolicy(rules).classify_url(SHORTS_URL, BlockSettings())
    states = []
    overlay = BlockOverlay(page, scheduler, rules, logging.getLogger("test"), on_state_change=states.append)

    with pytest.raises(RuntimeError):
        overlay.show(block)

    assert states == [OverlayState.SHOWING, OverlayState.HIDDEN]
    assert overlay.active is False
    assert overlay.block is None

    page.fail = False
    assert overlay.show(block) is True
    assert overlay.state is OverlayState.COUNTING_DOWN
    assert find(page, OVERLAY_ID) is not None
