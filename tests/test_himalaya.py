from __future__ import annotations

import json
import subprocess

import pytest

from neotex.config import Config
from neotex.events import EventBus, CommandCompleted, run_command_callback
from neotex.himalaya import (
    HimalayaClient,
    HimalayaError,
    AuthenticationError,
    NotFoundError,
    TransportError,
    ResponseError,
    classify_error,
    parse_args,
    parse_envelope,
)


class FakeRunner:
    """Replays queued (returncode, stdout, stderr) results, recording each call."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls: list[dict] = []

    def __call__(self, cmd, **kwargs):
        self.calls.append({"cmd": list(cmd), **kwargs})
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        returncode, stdout, stderr = result
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)


def make_config(oauth: bool = False, refresh_cmd=None) -> Config:
    return Config({
        "default_account": "work",
        "accounts": {
            "work": {"email": "me@example.com", "oauth": oauth, "oauth_refresh_cmd": refresh_cmd},
            "home": {"email": "me@home.example"},
        },
    }, discover=False)


def ok(payload) -> tuple[int, str, str]:
    return 0, json.dumps(payload), ""


def test_build_command_orders_arguments() -> None:
    client = HimalayaClient(make_config())

    cmd = client.build_command(["envelope", "list"], "work", "INBOX")

    assert cmd == ["himalaya", "envelope", "list", "-a", "work", "-o", "json", "-f", "INBOX"]
    assert "-f" not in client.build_command(["folder", "list"], "work")


def test_list_parses_envelopes() -> None:
    runner = FakeRunner(ok([
        {"id": 7, "subject": "Hello", "from": {"name": "Alice", "addr": "a@example.com"},
         "date": "2024-01-01", "flags": ["Seen"], "has_attachment": True},
        {"id": "8", "subject": None, "from": {"addr": "b@example.com"}, "flags": []},
    ]))
    client = HimalayaClient(make_config(), runner=runner)

    messages = client.list("work", "INBOX", page=2, page_size=10)

    assert runner.calls[0]["cmd"][:6] == ["himalaya", "envelope", "list", "--page", "2", "--page-size"]
    assert [m.id for m in messages] == ["7", "8"]
    assert messages[0].sender == "Alice <a@example.com>"
    assert messages[0].seen and messages[0].has_attachment
    assert messages[1].subject == "" and not messages[1].seen


def test_list_appends_search_query() -> None:
    runner = FakeRunner(ok([]))
    client = HimalayaClient(make_config(), runner=runner)

    client.list("work", "INBOX", query='subject "quarterly report"')

    assert runner.calls[0]["cmd"][7:9] == ["subject", "quarterly report"]


def test_list_rejects_non_list_output() -> None:
    client = HimalayaClient(make_config(), runner=FakeRunner(ok({"oops": True})))
    with pytest.raises(ResponseError):
        client.list("work", "INBOX")


def test_default_account_is_used() -> None:
    runner = FakeRunner(ok([]))
    client = HimalayaClient(make_config(), runner=runner)

    client.execute(["folder", "list"])

    cmd = runner.calls[0]["cmd"]
    assert cmd[cmd.index("-a") + 1] == "work"


def test_missing_account_raises() -> None:
    client = HimalayaClient(Config({}, discover=False), runner=FakeRunner())
    with pytest.raises(HimalayaError, match="No account configured"):
        client.execute(["folder", "list"])


def test_auth_failure_refreshes_and_retries_once() -> None:
    runner = FakeRunner(
        (1, "", "401 Unauthorized"),
        (0, "", ""),
        ok([{"name": "INBOX"}]),
    )
    notices: list[str] = []
    client = HimalayaClient(make_config(oauth=True, refresh_cmd="refresh-token work"),
                            runner=runner, notify=lambda m, error=False: notices.append(m))

    assert client.list_folders() == ["INBOX"]
    assert runner.calls[1]["cmd"] == ["refresh-token", "work"]
    assert len(runner.calls) == 3
    assert notices == ["Authentication failed, refreshing token..."]


def test_auth_failure_after_refresh_is_reported() -> None:
    runner = FakeRunner(
        (1, "", "authentication failed"),
        (0, "", ""),
        (1, "", "authentication failed"),
    )
    client = HimalayaClient(make_config(oauth=True, refresh_cmd=["refresh"]), runner=runner)

    with pytest.raises(AuthenticationError, match="after OAuth refresh"):
        client.list_folders()
    assert len(runner.calls) == 3


def test_failed_refresh_stops_retry() -> None:
    runner = FakeRunner((1, "", "401"), (2, "", "refresh broke"))
    client = HimalayaClient(make_config(oauth=True, refresh_cmd="refresh"), runner=runner)

    with pytest.raises(AuthenticationError, match="OAuth refresh failed"):
        client.list_folders()
    assert len(runner.calls) == 2


def test_no_retry_without_oauth() -> None:
    runner = FakeRunner((1, "", "401 Unauthorized"))
    client = HimalayaClient(make_config(oauth=False), runner=runner)

    with pytest.raises(AuthenticationError):
        client.list_folders()
    assert len(runner.calls) == 1


def test_move_accepts_plain_text_output() -> None:
    runner = FakeRunner((0, "Message(s) successfully moved!\n", ""))
    client = HimalayaClient(make_config(), runner=runner)

    assert client.move("12", "Archive", account="work", source_folder="INBOX") is True
    cmd = runner.calls[0]["cmd"]
    assert cmd[1:5] == ["message", "move", "Archive", "12"]
    assert cmd[-2:] == ["-f", "INBOX"]


def test_send_passes_template_on_stdin() -> None:
    runner = FakeRunner((0, "Message successfully sent!", ""))
    client = HimalayaClient(make_config(), runner=runner)

    assert client.send("To: a@example.com\n\nhi", account="work") == "Message successfully sent!"
    assert runner.calls[0]["input"] == "To: a@example.com\n\nhi"


def test_unparseable_output_for_json_command() -> None:
    client = HimalayaClient(make_config(), runner=FakeRunner((0, "not json", "")))
    with pytest.raises(ResponseError, match="Failed to parse response"):
        client.list_folders()


def test_missing_binary_is_a_transport_error() -> None:
    client = HimalayaClient(make_config(), runner=FakeRunner(FileNotFoundError("himalaya")))
    with pytest.raises(TransportError, match="Please install himalaya"):
        client.list_folders()


def test_fetch_reads_message() -> None:
    runner = FakeRunner(ok("Subject: hi\n\nbody"))
    client = HimalayaClient(make_config(), runner=runner)

    body = client.fetch("work", "INBOX", 42)

    assert body.id == "42" and body.folder == "INBOX"
    assert body.content.endswith("body")
    assert runner.calls[0]["cmd"][1:4] == ["message", "read", "42"]


def test_reply_all_template_arguments() -> None:
    runner = FakeRunner(ok("To: x\n"))
    client = HimalayaClient(make_config(), runner=runner)

    client.template("reply", "work", "INBOX", email_id=5, reply_all=True)

    assert runner.calls[0]["cmd"][1:5] == ["template", "reply", "5", "--all"]


@pytest.mark.parametrize(
    "stderr, exc_type, text",
    [
        ("HTTP 401", AuthenticationError, "401"),
        ("folder Archive not found", NotFoundError, "Folder not found"),
        ("No such file or directory (os error 2)", TransportError, "Please install himalaya"),
        ("message 9 not found", NotFoundError, "message 9"),
        ("connection refused", TransportError, "Network error"),
        ("operation timed out", TransportError, "timed out"),
        ("", TransportError, "Command failed"),
    ],
)
def test_classify_error(stderr: str, exc_type: type, text: str) -> None:
    error = classify_error(stderr)
    assert type(error) is exc_type
    assert text in str(error)


def test_parse_args_quotes() -> None:
    assert parse_args('from alice subject "big news"') == ["from", "alice", "subject", "big news"]
    assert parse_args("subject 'half open") == ["subject", "half open"]
    assert parse_args("") == []


def test_parse_envelope_with_address_list() -> None:
    meta = parse_envelope({"id": 3, "from": [{"addr": "a@x"}, {"name": "B", "addr": "b@x"}]})
    assert meta.sender == "a@x, B <b@x>"


def test_execute_async_posts_result_for_main_thread() -> None:
    bus = EventBus()
    client = HimalayaClient(make_config(), bus=bus, runner=FakeRunner(ok(["INBOX"])))
    seen: list = []

    thread = client.execute_async(["folder", "list"], lambda result, error: seen.append((result, error)))
    thread.join(timeout=5)
    assert seen == []

    bus.subscribe(CommandCompleted, run_command_callback)
    assert bus.process_pending() == 1
    assert seen == [(["INBOX"], None)]


def test_execute_async_reports_errors() -> None:
    bus = EventBus()
    client = HimalayaClient(make_config(), bus=bus, runner=FakeRunner((1, "", "connection reset")))
    seen: list = []

    bus.subscribe(CommandCompleted, run_command_callback)
    client.execute_async(["folder", "list"], lambda result, error: seen.append((result, error))).join(timeout=5)
    bus.process_pending()

    assert seen == [(None, "Network error. Check your internet connection.")]


def test_smart_delete_moves_to_trash() -> None:
    runner = FakeRunner((0, "Message(s) successfully moved to trash!\n", ""))
    client = HimalayaClient(make_config(), runner=runner)

    assert client.smart_delete("12", account="work", folder="INBOX") == (True, [])
    assert runner.calls[0]["cmd"][1:4] == ["message", "delete", "12"]
    assert len(runner.calls) == 1


def test_smart_delete_without_trash_suggests_folders() -> None:
    runner = FakeRunner(
        (1, "", "cannot move message: folder Trash not found"),
        ok([{"name": "INBOX"}, {"name": "[Gmail]/Bin"}, {"name": "Deleted Items"}, {"name": "Sent"}]),
    )
    client = HimalayaClient(make_config(), runner=runner)

    assert client.smart_delete("12", account="work", folder="INBOX") == (False, ["[Gmail]/Bin", "Deleted Items"])
    assert runner.calls[1]["cmd"][1:3] == ["folder", "list"]


def test_smart_delete_keeps_other_not_found_errors() -> None:
    runner = FakeRunner((1, "", "message 12 not found"))
    client = HimalayaClient(make_config(), runner=runner)

    with pytest.raises(NotFoundError, match="message 12"):
        client.smart_delete("12", account="work", folder="INBOX")
    assert len(runner.calls) == 1


def test_purge_flags_then_expunges() -> None:
    runner = FakeRunner((0, "Flag(s) successfully added!", ""), (0, "Folder successfully expunged!", ""))
    client = HimalayaClient(make_config(), runner=runner)

    assert client.purge("12", account="work", folder="Archive") is True
    flag, expunge = (call["cmd"] for call in runner.calls)
    assert flag[1:5] == ["flag", "add", "12", "deleted"]
    assert flag[-2:] == ["-f", "Archive"]
    assert expunge[1:4] == ["folder", "expunge", "Archive"]
    assert "-f" not in expunge


def test_save_draft_sends_template_to_the_drafts_folder() -> None:
    runner = FakeRunner((0, "Template successfully saved!", ""))
    client = HimalayaClient(make_config(), runner=runner)

    assert client.save_draft("To: a@example.com\n\ndraft", account="work", folder="[Gmail].Drafts") is True
    cmd = runner.calls[0]["cmd"]
    assert cmd[1:3] == ["template", "save"]
    assert cmd[-2:] == ["-f", "[Gmail].Drafts"]
    assert runner.calls[0]["input"] == "To: a@example.com\n\ndraft"
