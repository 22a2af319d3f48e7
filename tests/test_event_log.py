"""Tests for the append-only event log — proves immutability and integrity."""

import json

import pytest
from datetime import datetime, timezone
from pathlib import Path

from prefix_registry.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _event(n: int, prefix: str = "MYAPP", kind: EventKind = EventKind.PREFIX_SUBMITTED) -> EventRecord:
    return EventRecord.create(
        event_id=f"EVT-{n:08d}",
        event_kind=kind,
        actor_id="owner-1",
        payload={"prefix": prefix, "fee_paid": 100},
        timestamp_utc=_now(),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _event(1).event_hash == _event(1).event_hash

    def test_hash_covers_payload(self) -> None:
        a = _event(1, prefix="MYAPP")
        b = _event(1, prefix="OTHER")
        assert a.event_hash != b.event_hash

    def test_timestamp_format(self) -> None:
        assert _event(1).timestamp_utc == "2026-03-01T12:00:00Z"


class TestAppend:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2, kind=EventKind.PREFIX_APPROVED))
        assert log.count == 2
        assert len(log.events(EventKind.PREFIX_APPROVED)) == 1
        assert log.last_event.event_id == "EVT-00000002"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event(1))
        assert log.count == 1

    def test_events_for_prefix(self) -> None:
        log = EventLog()
        log.append(_event(1, prefix="MYAPP"))
        log.append(_event(2, prefix="OTHER"))
        log.append(_event(3, prefix="MYAPP", kind=EventKind.PREFIX_APPROVED))
        history = log.events_for_prefix("MYAPP")
        assert [e.event_id for e in history] == ["EVT-00000001", "EVT-00000003"]

    def test_events_since(self) -> None:
        log = EventLog()
        log.append(_event(1))
        assert log.events_since("2026-03-01T12:00:00Z") != []
        assert log.events_since("2026-03-02T00:00:00Z") == []


class TestHeadDigest:
    def test_empty_log_digest(self) -> None:
        assert EventLog().head_digest().startswith("sha256:")

    def test_digest_changes_with_each_append(self) -> None:
        log = EventLog()
        digests = {log.head_digest()}
        for n in range(1, 4):
            log.append(_event(n))
            digests.add(log.head_digest())
        assert len(digests) == 4

    def test_digest_depends_on_order(self) -> None:
        a, b = EventLog(), EventLog()
        a.append(_event(1, prefix="AAA"))
        a.append(_event(2, prefix="BBB"))
        b.append(_event(2, prefix="BBB"))
        b.append(_event(1, prefix="AAA"))
        assert a.head_digest() != b.head_digest()


class TestFilePersistence:
    def test_reload_preserves_events(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        log.append(_event(2))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.head_digest() == log.head_digest()

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))

        data = json.loads(path.read_text(encoding="utf-8"))
        data["payload"]["fee_paid"] = 1
        path.write_text(json.dumps(data) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_replayed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID"):
            EventLog(storage_path=path)
