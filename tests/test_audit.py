"""Tests for the capped operation log."""

from __future__ import annotations

from vaultsync.audit import AUDIT_LOG_NAME, AuditEntry, audit_event, read_events


class TestAuditLog:
    """JSONL append, cap and tolerant reads."""

    def test_event_written(self, home) -> None:
        entry = audit_event(home, "SAVE", "Saved 1 records", account="alice", metadata={"version": 1})
        assert isinstance(entry, AuditEntry)
        events = read_events(home)
        assert len(events) == 1
        assert events[0].event_type == "SAVE"
        assert events[0].account == "alice"
        assert events[0].metadata == {"version": 1}
        assert events[0].host

    def test_cap_keeps_newest(self, home) -> None:
        for i in range(5):
            audit_event(home, "SAVE", f"save {i}", max_entries=3)
        events = read_events(home)
        assert [e.detail for e in events] == ["save 2", "save 3", "save 4"]

    def test_limit(self, home) -> None:
        for i in range(4):
            audit_event(home, "LOAD", f"load {i}")
        assert [e.detail for e in read_events(home, limit=2)] == ["load 2", "load 3"]

    def test_missing_log(self, home) -> None:
        assert read_events(home) == []

    def test_unparseable_lines(self, home) -> None:
        audit_event(home, "SAVE", "ok")
        log_file = home / "logs" / AUDIT_LOG_NAME
        log_file.write_text(log_file.read_text() + "garbage line\n")
        events = read_events(home)
        assert [e.event_type for e in events] == ["SAVE", "UNPARSEABLE"]
        assert events[1].detail == "garbage line"
