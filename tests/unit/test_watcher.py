"""Tests for watch mode."""

import json
import threading

from sesame.parsers import PiParser
from sesame.storage import get_session
from sesame.watcher import (
    WatchedSource,
    _sources_for_changes,
    emit_json_line,
    run_index_pass,
    watch_sources,
)


def test_run_index_pass_emits_one_event_per_source(db, temp_dir, pi_session):
    pi_session().header(id="w1").user("hello").write(temp_dir / "src" / "w1.jsonl")
    sources = [
        WatchedSource(path=temp_dir / "src", parser=PiParser()),
        WatchedSource(path=temp_dir / "missing", parser=PiParser()),
    ]
    events = []

    run_index_pass(db, sources, events.append)

    assert len(events) == 2
    assert events[0]["path"] == str(temp_dir / "src")
    assert (events[0]["added"], events[0]["errors"]) == (1, 0)
    assert "error" not in events[0]
    assert events[1]["added"] == 0
    assert events[1]["error"]
    assert get_session(db, "w1") is not None


def test_poll_mode_runs_initial_pass_and_stops(db, temp_dir, pi_session):
    pi_session().header(id="p1").write(temp_dir / "src" / "p1.jsonl")
    stop = threading.Event()
    stop.set()
    events = []

    watch_sources(
        db,
        [WatchedSource(path=temp_dir / "src", parser=PiParser())],
        interval=60,
        emit=events.append,
        stop_event=stop,
    )

    assert len(events) == 1
    assert events[0]["added"] == 1


def test_watch_without_directories_returns(db, temp_dir):
    events = []

    watch_sources(
        db,
        [WatchedSource(path=temp_dir / "missing", parser=PiParser())],
        emit=events.append,
    )

    assert len(events) == 1


def test_sources_for_changes(temp_dir):
    a = WatchedSource(path=temp_dir / "a", parser=PiParser())
    b = WatchedSource(path=temp_dir / "b", parser=PiParser())

    matched = _sources_for_changes([a, b], [str(temp_dir / "b" / "proj" / "s.jsonl")])

    assert matched == [b]


def test_emit_json_line(capsys):
    emit_json_line({"path": "/x", "added": 1})

    assert json.loads(capsys.readouterr().out) == {"path": "/x", "added": 1}
