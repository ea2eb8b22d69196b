from __future__ import annotations

import re

from neotex.conversation import (
    TEMPLATE,
    append_lines,
    build_contents,
    default_filename,
    ensure_extension,
    format_response,
    format_submission,
    parse_front_matter,
    split_turns,
)


def test_template_front_matter() -> None:
    lines = TEMPLATE.split("\n")

    settings, body_start = parse_front_matter(lines)

    assert settings["name"] == "Computer Scientist"
    assert settings["prompt"].startswith("You are an expert logician")
    assert "model" not in settings and "temperature" not in settings
    assert lines[body_start - 1] == "---"
    assert split_turns(lines, body_start) == []


def test_front_matter_values_and_comments() -> None:
    lines = [
        "---",
        "interlocutor:",
        "  name: Ada",
        "  model: gemini-2.5-pro   # faster",
        '  temperature: "0.3"',
        "other:",
        "  name: ignored",
        "---",
        "hello",
    ]

    settings, body_start = parse_front_matter(lines)

    assert settings == {"name": "Ada", "model": "gemini-2.5-pro", "temperature": "0.3"}
    assert body_start == 8


def test_missing_or_unterminated_front_matter() -> None:
    assert parse_front_matter(["hello"]) == ({}, 0)
    assert parse_front_matter(["---", "interlocutor:", "  name: Ada"]) == ({}, 0)
    assert parse_front_matter([]) == ({}, 0)


def test_split_turns_alternates_roles() -> None:
    lines = [
        "What is a monad?",
        "<!-- note to self -->",
        ":::Ada",
        "A monoid in the category of endofunctors.",
        ":::",
        "",
        "Explain that.",
        ":::Ada",
        "Sure.",
        ":::",
        "Thanks",
    ]

    assert split_turns(lines) == [
        ("user", "What is a monad?"),
        ("model", "A monoid in the category of endofunctors."),
        ("user", "Explain that."),
        ("model", "Sure."),
        ("user", "Thanks"),
    ]


def test_split_turns_merges_adjacent_user_text() -> None:
    lines = ["first", ":::Ada", "", ":::", "second"]
    assert split_turns(lines) == [("user", "first\n\nsecond")]


def test_build_contents() -> None:
    contents = build_contents([("user", "hi"), ("model", "hello")])

    assert [c.role for c in contents] == ["user", "model"]
    assert contents[1].parts[0].text == "hello"


def test_format_submission_and_append() -> None:
    text = format_submission("x = 1", "Why?")
    assert text == "Text Selection:\nx = 1\n\nUser Message:\nWhy?"

    assert append_lines(["previous"], "a\nb") == ["", "a", "b"]
    assert append_lines(["previous", ""], "a") == ["a"]
    assert append_lines([], "a") == ["a"]


def test_format_response() -> None:
    assert format_response("Ada", "line one\nline two\n") == [":::Ada", "line one", "line two", ":::"]
    assert format_response(None, "ok")[0] == ":::Assistant"


def test_file_names() -> None:
    assert re.fullmatch(r"lectic-\d{4}-\d{2}-\d{2}\.lec", default_filename())
    assert ensure_extension("/tmp/chat") == "/tmp/chat.lec"
    assert ensure_extension("/tmp/chat.lec") == "/tmp/chat.lec"
