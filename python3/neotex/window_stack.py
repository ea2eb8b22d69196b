import enum
from dataclasses import dataclass
from neotex import log

# Sentinel meaning "use whatever surface the host has focused right now".
CURRENT = object()

class StaleSurfaceError(Exception):
    """Raised by a host when it is handed a surface handle that is gone."""

class SurfaceKind(enum.Enum):
    LIST = 'list'
    READING = 'reading'
    COMPOSE = 'compose'
    OTHER = 'other'

@dataclass
class Surface:
    handle: object
    kind: SurfaceKind = SurfaceKind.OTHER
    buffer: object = None
    parent: object = None
    parent_buffer: object = None
    email_id: object = None
    closed: bool = False

class WindowStack:
    """
    Tracks the surfaces (windows) opened by the email UI together with the
    surface each one was opened from, so that closing a nested surface can
    hand focus back to the right place.

    The host passed in must provide:
        current()        -> handle of the focused surface, or None
        is_valid(h)      -> bool
        focus(h)
        close(h)
        buffer_of(h)     -> content buffer shown in the surface
        surfaces()       -> iterable of open surface handles

    Any of these may raise StaleSurfaceError for a handle that has gone away.
    """

    def __init__(self, host):
        self.host = host
        self._entries = []

    def push(self, handle, parent=CURRENT, kind=SurfaceKind.OTHER, email_id=None):
        """
        Registers a new surface and returns its handle.

        Args:
            handle: The host handle of the new surface.
            parent: The surface it was opened from. When omitted, the
                surface focused at call time is used. Pass None for a root.
            kind (SurfaceKind): What the surface displays.
            email_id: The message shown by a reading or compose surface.
        """
        if parent is CURRENT:
            parent = self._safe(self.host.current)

        # Re-pushing a tracked surface moves it to the top.
        self._entries = [e for e in self._entries if e.handle != handle]

        if parent is not None and self._would_cycle(handle, parent):
            log.log_debug(f"window_stack: dropping parent {parent} of {handle} (cycle)")
            parent = None

        parent_buffer = None
        if parent is not None:
            parent_buffer = self._safe(self.host.buffer_of, parent)
            if parent_buffer is None:
                # The parent may have been closed already; reuse what we knew.
                known = self.find(parent)
                if known is not None:
                    parent_buffer = known.buffer

        entry = Surface(
            handle=handle,
            kind=kind,
            buffer=self._safe(self.host.buffer_of, handle),
            parent=parent,
            parent_buffer=parent_buffer,
            email_id=email_id,
        )
        self._entries.append(entry)
        log.log_debug(f"window_stack: push {handle} kind={kind.value} parent={parent} depth={len(self._entries)}")
        return handle

    def pop(self):
        """
        Closes the most recently pushed surface that is still open and
        restores focus to its parent. Returns True if focus was restored.
        """
        for index in range(len(self._entries) - 1, -1, -1):
            entry = self._entries[index]
            if self._is_live(entry):
                del self._entries[index]
                self._close(entry.handle)
                restored = self._restore(entry)
                self._prune()
                return restored
        self._prune()
        return False

    def close_current(self):
        """
        Closes the focused surface wherever it sits in the stack and restores
        focus to its parent. Returns False if the focused surface is not
        tracked or no parent could be focused.
        """
        current = self._safe(self.host.current)
        if current is None:
            return False

        for index in range(len(self._entries) - 1, -1, -1):
            entry = self._entries[index]
            if entry.handle == current:
                del self._entries[index]
                self._close(entry.handle)
                restored = self._restore(entry)
                self._prune()
                return restored
        return False

    def discard(self, handle):
        """
        Closes a tracked surface and drops its entry without moving focus.
        Returns False if the handle is not tracked.
        """
        entry = self.find(handle)
        if entry is None:
            return False
        self._entries.remove(entry)
        self._close(handle)
        self._prune()
        return True

    def mark_closed(self, handle):
        """Records that a surface was closed outside of the stack."""
        entry = self.find(handle)
        if entry is not None:
            entry.closed = True
            self._prune()

    def clear(self):
        self._entries = []

    def depth(self):
        return len(self._entries)

    def find(self, handle):
        for entry in reversed(self._entries):
            if entry.handle == handle:
                return entry
        return None

    def top(self):
        return self._entries[-1] if self._entries else None

    def showing(self, email_id):
        """Live reading surfaces that show email_id, newest first."""
        return [e for e in reversed(self._entries)
                if e.kind == SurfaceKind.READING and e.email_id == email_id and self._is_live(e)]

    def _restore(self, entry):
        """
        Walks up the parent chain of a removed entry. At each level the parent
        itself is tried first, then any other open surface showing the
        parent's original buffer.

        When neither works the walk continues with the parent's own recorded
        parent instead of giving up, as long as the stack still holds that
        parent's entry. A middle surface closed behind our back (A -> B -> C
        with B gone) then hands focus back to A when C closes. False is
        returned only once the root is passed.
        """
        seen = {entry.handle}
        parent, parent_buffer = entry.parent, entry.parent_buffer

        while parent is not None and parent not in seen:
            seen.add(parent)

            if self._valid(parent) and self._focus(parent):
                return True

            if parent_buffer is not None:
                for handle in self._open_surfaces():
                    if handle in seen or not self._valid(handle):
                        continue
                    if self._safe(self.host.buffer_of, handle) == parent_buffer and self._focus(handle):
                        log.log_debug(f"window_stack: parent {parent} gone, focused {handle} showing its buffer")
                        return True

            ancestor = self.find(parent)
            if ancestor is None:
                break
            parent, parent_buffer = ancestor.parent, ancestor.parent_buffer

        return False

    def _prune(self):
        """
        Drops dead entries (closed or no longer valid) unless a live entry
        still reaches them through its parent chain.
        """
        keep = set()
        for entry in self._entries:
            if not self._is_live(entry):
                continue
            keep.add(entry.handle)
            parent = entry.parent
            while parent is not None and parent not in keep:
                ancestor = self.find(parent)
                if ancestor is None:
                    break
                keep.add(parent)
                parent = ancestor.parent

        dropped = len(self._entries)
        self._entries = [e for e in self._entries if e.handle in keep]
        dropped -= len(self._entries)
        if dropped:
            log.log_debug(f"window_stack: pruned {dropped} dead entries, depth={len(self._entries)}")

    def _would_cycle(self, handle, parent):
        seen = set()
        while parent is not None and parent not in seen:
            if parent == handle:
                return True
            seen.add(parent)
            entry = self.find(parent)
            parent = entry.parent if entry else None
        return False

    def _is_live(self, entry):
        return not entry.closed and self._valid(entry.handle)

    def _valid(self, handle):
        return bool(self._safe(self.host.is_valid, handle))

    def _focus(self, handle):
        try:
            self.host.focus(handle)
            return True
        except StaleSurfaceError:
            return False

    def _close(self, handle):
        try:
            self.host.close(handle)
        except StaleSurfaceError:
            pass

    def _open_surfaces(self):
        surfaces = self._safe(self.host.surfaces)
        return list(surfaces) if surfaces else []

    def _safe(self, func, *args):
        try:
            return func(*args)
        except StaleSurfaceError:
            log.log_debug(f"window_stack: stale handle in {getattr(func, '__name__', func)}{args}")
            return None
