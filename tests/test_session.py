from __future__ import annotations

from pathlib import Path

import pytest

from neotex.session import (
    JUST_LIST,
    OPEN_PREVIOUS,
    RESTORE,
    START_FRESH,
    prompt_session_restore,
    restore_session,
)
from neotex.state import SessionState, FRESHNESS_SECONDS
from neotex.window_stack import WindowStack, SurfaceKind


class Host:
    def __init__(self) -> None:
        self.windows: dict[int, str] = {}
        self.focused: int | None = None

    def current(self):
        return self.focused

    def is_valid(self, handle) -> bool:
        return handle in self.windows

    def focus(self, handle) -> None:
        self.focused = handle

    def close(self, handle) -> None:
        self.windows.pop(handle, None)
        if self.focused == handle:
            self.focused = None

    def buffer_of(self, handle):
        return self.windows[handle]

    def surfaces(self):
        return list(self.windows)


class FakeUI:
    """Opens list and reading surfaces on a real window stack."""

    def __init__(self) -> None:
        self.host = Host()
        self.stack = WindowStack(self.host)
        self.notices: list[str] = []
        self.prompts: list[tuple[list[str], str]] = []
        self.on_choice = None
        self.opened: list[tuple] = []
        self._next = 1000
        self.list_fails = False

    def _open(self, buffer: str) -> int:
        self._next += 1
        self.host.windows[self._next] = buffer
        return self._next

    def notify(self, message: str, error: bool = False) -> None:
        self.notices.append(message)

    def show_email_list(self, account: str, folder: str) -> int | None:
        if self.list_fails:
            self.opened.append(("list failed", account, folder))
            return None
        handle = self._open(f"list:{account}/{folder}")
        self.stack.push(handle, parent=None, kind=SurfaceKind.LIST)
        self.host.focus(handle)
        self.opened.append(("list", account, folder))
        return handle

    def read_email(self, email_id, parent) -> int:
        handle = self._open(f"email:{email_id}")
        self.stack.push(handle, parent=parent, kind=SurfaceKind.READING)
        self.host.focus(handle)
        self.opened.append(("email", email_id))
        return handle

    def select(self, items: list[str], prompt: str, on_choice) -> None:
        self.prompts.append((items, prompt))
        self.on_choice = on_choice


class Clock:
    now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def state(tmp_path: Path) -> SessionState:
    state = SessionState(str(tmp_path / "state.json"), clock=Clock())
    state.set_current_account("work")
    state.set_current_folder("INBOX")
    return state


def test_nothing_to_restore(tmp_path: Path) -> None:
    ui = FakeUI()
    state = SessionState(str(tmp_path / "state.json"), clock=Clock())

    assert restore_session(state, ui) is False
    assert ui.notices == ["Cannot restore session: No previous email session found"]
    assert ui.opened == []


def test_restore_without_selected_email(state: SessionState) -> None:
    state.save()
    ui = FakeUI()

    assert restore_session(state, ui) is True
    assert ui.opened == [("list", "work", "INBOX")]
    assert ui.prompts == []
    assert ui.notices[-1] == "Email session restored"


def test_restore_offers_previous_email(state: SessionState) -> None:
    state.set_selected_email("77")
    state.save()
    ui = FakeUI()

    restore_session(state, ui)

    assert ui.prompts == [([OPEN_PREVIOUS, JUST_LIST], "Restore previous email session:")]
    ui.on_choice(OPEN_PREVIOUS)
    assert ui.opened[-1] == ("email", "77")


@pytest.mark.parametrize("choice", [JUST_LIST, None])
def test_declining_previous_email_keeps_the_list(state: SessionState, choice) -> None:
    state.set_selected_email("77")
    state.save()
    ui = FakeUI()

    restore_session(state, ui)
    ui.on_choice(choice)

    assert ui.opened == [("list", "work", "INBOX")]


def test_headless_restore_stacks_email_on_the_list(state: SessionState) -> None:
    state.set_selected_email("77")
    state.save()
    ui = FakeUI()

    assert restore_session(state, ui, headless=True) is True
    assert ui.prompts == []
    assert ui.stack.depth() == 2

    list_handle = ui.stack.find(ui.host.focused).parent
    assert ui.stack.find(list_handle).kind is SurfaceKind.LIST

    assert ui.stack.close_current() is True
    assert ui.host.focused == list_handle


def test_restore_mentions_previous_search(state: SessionState) -> None:
    state.set_search("from:alice", ["1", "2"])
    state.save()
    ui = FakeUI()

    restore_session(state, ui)

    assert "Previous search available" in ui.notices


def test_prompt_reports_reason_when_stale(state: SessionState) -> None:
    state.save()
    state.clock.now += FRESHNESS_SECONDS + 1
    ui = FakeUI()

    assert prompt_session_restore(state, ui) is False
    assert ui.notices == ["No recent session found (older than 24 hours)"]
    assert ui.prompts == []


def test_prompt_asks_before_restoring(state: SessionState) -> None:
    state.save()
    ui = FakeUI()

    assert prompt_session_restore(state, ui) is True
    assert ui.prompts == [([RESTORE, START_FRESH], "Session available: work/INBOX - Restore?")]
    assert ui.opened == []

    ui.on_choice(RESTORE)
    assert ui.opened == [("list", "work", "INBOX")]


def test_prompt_start_fresh_does_nothing(state: SessionState) -> None:
    state.save()
    ui = FakeUI()

    prompt_session_restore(state, ui)
    ui.on_choice(START_FRESH)

    assert ui.opened == []


def test_headless_prompt_restores_directly(state: SessionState) -> None:
    state.set_selected_email(5)
    state.save()
    ui = FakeUI()

    assert prompt_session_restore(state, ui, headless=True) is True
    assert ui.notices[0] == "Session available: work/INBOX"
    assert ui.opened == [("list", "work", "INBOX"), ("email", 5)]


@pytest.mark.parametrize("headless", [True, False])
def test_restore_stops_when_the_list_cannot_open(state: SessionState, headless: bool) -> None:
    state.set_selected_email("77")
    state.save()
    ui = FakeUI()
    ui.list_fails = True

    assert restore_session(state, ui, headless=headless) is False
    assert ui.opened == [("list failed", "work", "INBOX")]
    assert ui.prompts == []
    assert ui.notices == ["Cannot restore session: could not open work/INBOX"]
