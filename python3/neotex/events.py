import queue
from dataclasses import dataclass, field
from neotex import log

@dataclass
class SurfaceClosed:
    handle: object

@dataclass
class SyncProgress:
    target: str
    progress: dict = field(default_factory=dict)

@dataclass
class SyncCompleted:
    target: str
    ok: bool
    error: object = None

@dataclass
class CommandCompleted:
    args: list
    result: object = None
    error: object = None
    callback: object = None

class EventBus:
    """
    Carries events from worker threads and editor callbacks to the main
    thread. post() is safe from any thread; handlers only ever run inside
    process_pending(), which the editor calls from a timer.
    """

    def __init__(self):
        self._queue = queue.Queue()
        self._handlers = {}

    def subscribe(self, event_type, handler):
        self._handlers.setdefault(event_type, []).append(handler)

    def post(self, event):
        self._queue.put(event)

    def pending(self):
        return self._queue.qsize()

    def process_pending(self):
        """
        Dispatches every queued event in post order. A failing handler is
        logged and does not stop the remaining ones. Returns the number of
        events processed.
        """
        processed = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            processed += 1
            for handler in self._handlers.get(type(event), []):
                try:
                    handler(event)
                except Exception as e:
                    log.log_error(f"Event handler {getattr(handler, '__name__', handler)} failed for {event}: {e}")
        return processed

def run_command_callback(event):
    """Default CommandCompleted handler: hands the result to the caller's callback."""
    if event.callback is not None:
        event.callback(event.result, event.error)
