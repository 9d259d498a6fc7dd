"""Tests for the indexer module."""

import os

import pytest

from sesame.exceptions import ParserError
from sesame.indexer import discover_session_files, index_sessions, record_sync
from sesame.models import IndexResult
from sesame.parsers import PiParser
from sesame.storage import (
    LAST_SYNC_KEY,
    drop_all,
    get_metadata,
    get_session,
    get_session_chunks,
    get_stats,
)


class CountingParser(PiParser):
    """PiParser that records full parses."""

    def __init__(self):
        self.parsed = []

    def parse(self, path):
        self.parsed.append(path.name)
        return super().parse(path)


class FailingParser(PiParser):
    """PiParser that refuses one file by name."""

    def __init__(self, bad_name):
        self.bad_name = bad_name

    def parse(self, path):
        if path.name == self.bad_name:
            raise ParserError(f"cannot parse {path}")
        return super().parse(path)


@pytest.fixture
def sessions_dir(temp_dir):
    path = temp_dir / "sessions"
    path.mkdir()
    return path


def test_discover_recurses_one_level(sessions_dir, pi_session):
    pi_session().header(id="top").write(sessions_dir / "top.jsonl")
    pi_session().header(id="nested").write(sessions_dir / "--proj--" / "nested.jsonl")
    pi_session().header(id="deep").write(sessions_dir / "a" / "b" / "deep.jsonl")

    names = [p.name for p in discover_session_files(sessions_dir)]

    assert "top.jsonl" in names
    assert "nested.jsonl" in names
    assert "deep.jsonl" not in names


def test_discover_missing_directory_raises(temp_dir):
    with pytest.raises(OSError):
        discover_session_files(temp_dir / "missing")


def test_index_new_sessions(db, sessions_dir, pi_session):
    pi_session().header(id="s1", cwd="/proj").user("hello there").write(sessions_dir / "s1.jsonl")
    pi_session().header(id="s2").user("general kenobi").write(sessions_dir / "p" / "s2.jsonl")

    result = index_sessions(db, sessions_dir, PiParser())

    assert (result.added, result.updated, result.skipped, result.errors) == (2, 0, 0, 0)
    stored = get_session(db, "s1")
    assert stored.cwd == "/proj"
    assert stored.path == str(sessions_dir / "s1.jsonl")
    assert stored.message_count == 1
    assert stored.file_mtime == os.stat(sessions_dir / "s1.jsonl").st_mtime_ns // 1_000_000


def test_reindex_is_idempotent(db, sessions_dir, pi_session):
    pi_session().header(id="s1").user("hello").write(sessions_dir / "s1.jsonl")
    index_sessions(db, sessions_dir, PiParser())
    before = get_stats(db)

    result = index_sessions(db, sessions_dir, PiParser())

    assert (result.added, result.updated, result.skipped) == (0, 0, 1)
    after = get_stats(db)
    assert (after.session_count, after.chunk_count) == (before.session_count, before.chunk_count)


def test_unchanged_files_are_not_parsed(db, sessions_dir, pi_session):
    pi_session().header(id="s1").user("hello").write(sessions_dir / "s1.jsonl")
    index_sessions(db, sessions_dir, PiParser())
    parser = CountingParser()

    index_sessions(db, sessions_dir, parser)

    assert parser.parsed == []


def test_modified_file_replaces_session(db, sessions_dir, pi_session):
    path = pi_session().header(id="s1").user("original words").write(
        sessions_dir / "s1.jsonl", mtime=1_700_000_000
    )
    index_sessions(db, sessions_dir, PiParser())

    pi_session().header(id="s1").user("replacement words").write(path, mtime=1_700_000_100)
    result = index_sessions(db, sessions_dir, PiParser())

    assert (result.added, result.updated) == (0, 1)
    assert [c.content for c in get_session_chunks(db, "s1")] == ["replacement words"]
    assert get_session(db, "s1").file_mtime == 1_700_000_100_000
    assert get_stats(db).session_count == 1


def test_one_bad_file_does_not_stop_the_run(db, sessions_dir, pi_session):
    pi_session().header(id="good").user("fine").write(sessions_dir / "good.jsonl")
    pi_session().header(id="bad").user("broken").write(sessions_dir / "bad.jsonl")

    result = index_sessions(db, sessions_dir, FailingParser("bad.jsonl"))

    assert result.added == 1
    assert result.errors == 1
    assert get_session(db, "good") is not None
    assert get_session(db, "bad") is None


def test_unparseable_files_are_ignored(db, sessions_dir, pi_session):
    (sessions_dir / "notes.txt").write_text("not a session")
    (sessions_dir / "other.jsonl").write_text('{"type": "something-else"}\n')
    pi_session().header(id="s1").write(sessions_dir / "s1.jsonl")

    result = index_sessions(db, sessions_dir, PiParser())

    assert (result.added, result.errors) == (1, 0)


def test_unreadable_source_sets_scan_error(db, temp_dir):
    result = index_sessions(db, temp_dir / "does-not-exist", PiParser())

    assert (result.added, result.updated, result.skipped, result.errors) == (0, 0, 0, 0)
    assert result.scan_error


def test_source_that_is_a_file_sets_scan_error(db, temp_dir):
    path = temp_dir / "plain.txt"
    path.write_text("x")

    result = index_sessions(db, path, PiParser())

    assert result.scan_error


def test_full_rebuild_matches_fresh_index(db, temp_dir, sessions_dir, pi_session):
    from sesame.storage import open_database

    pi_session().header(id="s1").user("alpha").assistant("beta").write(sessions_dir / "s1.jsonl")
    pi_session().header(id="s2").tool_call("bash", command="ls").write(sessions_dir / "s2.jsonl")
    index_sessions(db, sessions_dir, PiParser())

    drop_all(db)
    rebuilt = index_sessions(db, sessions_dir, PiParser())

    fresh = open_database(temp_dir / "fresh.sqlite")
    index_sessions(fresh, sessions_dir, PiParser())

    assert rebuilt.added == 2
    for session_id in ("s1", "s2"):
        assert get_session(db, session_id) == get_session(fresh, session_id)
        assert [(c.kind, c.content) for c in get_session_chunks(db, session_id)] == [
            (c.kind, c.content) for c in get_session_chunks(fresh, session_id)
        ]
    fresh.close()


class TestRecordSync:
    def test_records_after_changes(self, db):
        assert record_sync(db, IndexResult(added=1)) is True
        assert get_metadata(db, LAST_SYNC_KEY) is not None

    def test_nothing_changed(self, db):
        assert record_sync(db, IndexResult(skipped=3)) is False
        assert get_metadata(db, LAST_SYNC_KEY) is None

    def test_errors_block_sync(self, db):
        assert record_sync(db, IndexResult(added=1, errors=1)) is False
        assert record_sync(db, IndexResult(updated=1, scan_error="denied")) is False
        assert get_metadata(db, LAST_SYNC_KEY) is None

    def test_scan_error_from_any_source_blocks_sync(self, db):
        total = IndexResult()
        total.merge(IndexResult(added=2))
        total.merge(IndexResult(scan_error="No such file or directory"))
        total.merge(IndexResult(updated=1))

        assert (total.added, total.updated) == (2, 1)
        assert total.scan_error == "No such file or directory"
        assert record_sync(db, total) is False
        assert get_metadata(db, LAST_SYNC_KEY) is None


@pytest.mark.parametrize(
    "bad_record",
    [
        {"type": "message", "message": "oops"},
        {
            "type": "message",
            "message": {
                "role": "assistant",
                "content": [{"type": "toolCall", "name": "bash", "arguments": ["ls"]}],
            },
        },
        {"type": "compaction", "summary": None},
    ],
)
def test_malformed_record_does_not_drop_session(db, sessions_dir, pi_session, bad_record):
    pi_session().header(id="a1").user("still searchable").raw(bad_record).write(
        sessions_dir / "a1.jsonl"
    )

    result = index_sessions(db, sessions_dir, PiParser())

    assert (result.added, result.errors) == (1, 0)
    assert get_session(db, "a1") is not None
    assert "still searchable" in [c.content for c in get_session_chunks(db, "a1")]
