import logging

from shorts_blocker.change_watcher import ChangeWatcher, CoalescingQueue
from shorts_blocker.host import SoupPage
from shorts_blocker.scheduler import ManualScheduler

PAGE = '<html><body><div id="feed"></div></body></html>'


def make_watcher(debounce_ms=100):
    scheduler = ManualScheduler()
    page = SoupPage(PAGE, "https://www.youtube.com/", scheduler)
    batches = []
    watcher = ChangeWatcher(page, scheduler, batches.append, logging.getLogger("test"), debounce_ms=debounce_ms)
    return scheduler, page, watcher, batches


def test_queue_coalesces_and_flushes_once():
    scheduler = ManualScheduler()
    flushed = []
    queue = CoalescingQueue(scheduler, 0.1, flushed.append)
    a, b = object(), object()

    assert queue.push([a, b, a]) == 2
    assert queue.coalesced == 1
    scheduler.advance(0.05)
    assert flushed == []

    scheduler.advance(0.1)
    assert flushed == [[a, b]]
    assert queue.flush_now() == []
    scheduler.advance(1.0)
    assert queue.flush_count == 1
    assert len(flushed) == 1


def test_queue_push_during_flush_starts_next_window():
    scheduler = ManualScheduler()
    flushed = []
    late = object()

    def on_flush(batch):
        flushed.append(list(batch))
        if len(flushed) == 1:
            queue.push([late])

    queue = CoalescingQueue(scheduler, 0.1, on_flush)
    first = object()
    queue.push([first])
    scheduler.advance(0.15)
    assert flushed == [[first]]
    assert queue.pending == [late]

    scheduler.advance(0.15)
    assert flushed == [[first], [late]]
    assert queue.flush_count == 2


def test_queue_clear_drops_pending_batch():
    scheduler = ManualScheduler()
    flushed = []
    queue = CoalescingQueue(scheduler, 0.1, flushed.append)
    queue.push([object()])
    queue.clear()
    scheduler.advance(1.0)
    assert flushed == []
    assert scheduler.pending_count == 0


def test_burst_of_insertions_is_one_batch():
    scheduler, page, watcher, batches = make_watcher()
    watcher.start()
    feed = page.query(page.document_root(), "#feed")

    for i in range(5):
        page.append_html(feed, f'<ytd-video-renderer id="v{i}"></ytd-video-renderer>')
    scheduler.run_pending()
    assert batches == []

    scheduler.advance(0.05)
    page.append_html(feed, "<p>late</p>")
    # The new insertion re-arms the window, so nothing fires at 100ms.
    scheduler.advance(0.06)
    assert batches == []

    scheduler.advance(0.2)
    assert len(batches) == 1
    assert [node.get("id") for node in batches[0][:5]] == [f"v{i}" for i in range(5)]
    assert batches[0][5].name == "p"


def test_text_and_attribute_changes_are_ignored():
    scheduler, page, watcher, batches = make_watcher()
    watcher.start()
    feed = page.query(page.document_root(), "#feed")

    page.append_html(feed, "just text")
    page.set_attribute(feed, "data-x", "1")
    page.set_text(feed, "replaced")
    scheduler.run_pending()
    scheduler.advance(1.0)

    assert batches == []


def test_start_is_idempotent_and_stop_cancels_pending():
    scheduler, page, watcher, batches = make_watcher()
    watcher.start()
    watcher.start()
    assert watcher.running is True
    feed = page.query(page.document_root(), "#feed")

    page.append_html(feed, "<div>one</div>")
    scheduler.run_pending()
    assert len(batches) == 0

    page.append_html(feed, "<div>two</div>")
    scheduler.advance(0.2)
    assert len(batches) == 1

    page.append_html(feed, "<div>three</div>")
    scheduler.run_pending()
    watcher.stop()
    assert watcher.running is False
    page.append_html(feed, "<div>four</div>")
    scheduler.advance(1.0)
    assert len(batches) == 1
