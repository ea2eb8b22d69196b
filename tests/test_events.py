from __future__ import annotations

import threading

from neotex.events import EventBus, SurfaceClosed, SyncCompleted, CommandCompleted, run_command_callback


def test_handlers_run_only_when_processed() -> None:
    bus = EventBus()
    seen: list = []
    bus.subscribe(SurfaceClosed, seen.append)

    bus.post(SurfaceClosed(1001))
    assert seen == []
    assert bus.pending() == 1

    assert bus.process_pending() == 1
    assert seen == [SurfaceClosed(1001)]
    assert bus.pending() == 0


def test_events_dispatch_by_type_in_post_order() -> None:
    bus = EventBus()
    order: list[str] = []
    bus.subscribe(SurfaceClosed, lambda e: order.append(f"closed {e.handle}"))
    bus.subscribe(SyncCompleted, lambda e: order.append(f"sync {e.target}"))

    bus.post(SyncCompleted("gmail-inbox", ok=True))
    bus.post(SurfaceClosed(7))
    bus.post(SyncCompleted("gmail-sent", ok=False, error="boom"))
    bus.process_pending()

    assert order == ["sync gmail-inbox", "closed 7", "sync gmail-sent"]


def test_failing_handler_does_not_stop_the_others() -> None:
    bus = EventBus()
    seen: list = []

    def broken(event) -> None:
        raise ValueError("broken handler")

    bus.subscribe(SurfaceClosed, broken)
    bus.subscribe(SurfaceClosed, seen.append)
    bus.post(SurfaceClosed(1))
    bus.post(SurfaceClosed(2))

    assert bus.process_pending() == 2
    assert [e.handle for e in seen] == [1, 2]


def test_unsubscribed_events_are_dropped() -> None:
    bus = EventBus()
    bus.post(SurfaceClosed(1))
    assert bus.process_pending() == 1
    assert bus.process_pending() == 0


def test_post_from_worker_threads() -> None:
    bus = EventBus()
    seen: list = []
    bus.subscribe(SurfaceClosed, seen.append)

    threads = [threading.Thread(target=bus.post, args=(SurfaceClosed(i),)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    bus.process_pending()
    assert sorted(e.handle for e in seen) == list(range(20))


def test_command_callback_receives_result_or_error() -> None:
    calls: list = []
    run_command_callback(CommandCompleted(["folder", "list"], result=["INBOX"],
                                          callback=lambda r, e: calls.append((r, e))))
    run_command_callback(CommandCompleted(["folder", "list"], error="Network error",
                                          callback=lambda r, e: calls.append((r, e))))
    run_command_callback(CommandCompleted(["folder", "list"]))

    assert calls == [(["INBOX"], None), (None, "Network error")]
