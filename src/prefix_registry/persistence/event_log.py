"""Append-only event log — the audit trail of every registry transition.

Every successful operation produces exactly one event record that is
appended to the log. Events are immutable once written. The log serves as:
1. The stream relayers and wallets subscribe to for auditing.
2. The input to the head digest anchored on a public chain.
3. The source of truth for reconstructing a prefix's history.

The log is part of each operation's atomic unit: the service appends the
event inside the ledger transaction, so a failed append rolls back the
state change it describes.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of registry events."""
    # Prefix lifecycle
    PREFIX_SUBMITTED = "prefix_submitted"
    PREFIX_APPROVED = "prefix_approved"
    PREFIX_REJECTED = "prefix_rejected"
    PREFIX_METADATA_UPDATED = "prefix_metadata_updated"
    PREFIX_AUTHORITY_UPDATED = "prefix_authority_updated"
    PREFIX_DEACTIVATED = "prefix_deactivated"
    PREFIX_REACTIVATED = "prefix_reactivated"
    PREFIX_REFUNDED = "prefix_refunded"
    PREFIX_OWNER_RECOVERED = "prefix_owner_recovered"
    # Fee registry and treasury
    FEE_UPDATED = "fee_updated"
    PAUSE_UPDATED = "pause_updated"
    TREASURY_WITHDRAWN = "treasury_withdrawn"
    # Verifier roster
    VERIFIER_ADDED = "verifier_added"
    VERIFIER_REMOVED = "verifier_removed"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the registry log.

    Once created, an event cannot be modified. The event_hash is
    computed at creation time over the canonical JSON of the event.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    The log can be persisted to a JSONL file (one JSON object per line)
    and loaded back for recovery.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        The file write happens first, so an OSError leaves the in-memory
        log untouched.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_since(
        self,
        since_utc: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events at or after a timestamp, optionally filtered by kind."""
        result = [e for e in self._events if e.timestamp_utc >= since_utc]
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        return result

    def events_for_prefix(self, prefix: str) -> list[EventRecord]:
        """Return the history of one prefix, oldest first."""
        return [e for e in self._events if e.payload.get("prefix") == prefix]

    def head_digest(self) -> str:
        """Hash chain over all event hashes in append order.

        head_0 = sha256(b"")
        head_n = sha256(head_{n-1} || event_hash_n)
        """
        head = hashlib.sha256(b"").hexdigest()
        for event in self._events:
            head = hashlib.sha256(
                (head + event.event_hash.removeprefix("sha256:")).encode("ascii")
            ).hexdigest()
        return f"sha256:{head}"

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs (replay protection on recovery).
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
