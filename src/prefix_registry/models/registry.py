"""Registry models — fee registry, verifier roster, and prefix records.

These are the persisted entities of the prefix registry. Each lives in
the ledger store at a deterministic address (see crypto.addressing):

- FeeRegistry: singleton holding admin identity, current fee, pause flag.
- VerifierRoster: singleton holding the ordered set of verifiers.
- PrefixRecord: one per normalized prefix, the authoritative binding
  of prefix → owner, metadata, and authority keys.

The treasury has no data of its own — it is a protocol-owned balance
in the ledger store, addressed from the fee registry address.

Amounts are integers in the ledger's smallest currency unit. Identities
are hex-encoded Ed25519 public keys.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


ZERO_HASH = bytes(32)


class PrefixStatus(str, enum.Enum):
    """Lifecycle state of a prefix record.

    State machine (see engine.state_machine for the full table):
        (none) → PENDING            (submit with fee)
        PENDING → ACTIVE            (verifier approves)
        PENDING → REJECTED          (verifier rejects)
        ACTIVE → PENDING            (owner updates metadata, re-review)
        ACTIVE ⇄ INACTIVE           (admin deactivates / reactivates)
        REJECTED → (destroyed)      (owner refund)
    """
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    INACTIVE = "inactive"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


@dataclass
class FeeRegistry:
    """Process-wide fee configuration. Created once at initialization."""
    admin: str
    current_fee: int
    paused: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "admin": self.admin,
            "current_fee": self.current_fee,
            "paused": self.paused,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> FeeRegistry:
        return FeeRegistry(
            admin=data["admin"],
            current_fee=int(data["current_fee"]),
            paused=bool(data["paused"]),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )


@dataclass
class VerifierRoster:
    """Ordered set of identities allowed to approve or reject submissions."""
    admin: str
    verifiers: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def contains(self, identity: str) -> bool:
        return identity in self.verifiers

    def to_dict(self) -> dict[str, Any]:
        return {
            "admin": self.admin,
            "verifiers": list(self.verifiers),
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> VerifierRoster:
        return VerifierRoster(
            admin=data["admin"],
            verifiers=list(data.get("verifiers", [])),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )


@dataclass
class PrefixRecord:
    """The registration record for one prefix.

    Mutable — lifecycle transitions happen through the engine. The
    prefix and fee_paid fields are fixed at submission and never
    change afterwards.
    """
    owner: str
    prefix: str
    metadata_uri: str
    metadata_hash: bytes
    status: PrefixStatus = PrefixStatus.PENDING
    ref_hash: bytes = ZERO_HASH
    authority_keys: list[str] = field(default_factory=list)
    fee_paid: int = 0
    expiry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        """A record is expired only while it still has a review deadline."""
        return self.expiry_at is not None and now > self.expiry_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "prefix": self.prefix,
            "metadata_uri": self.metadata_uri,
            "metadata_hash": self.metadata_hash.hex(),
            "status": self.status.value,
            "ref_hash": self.ref_hash.hex(),
            "authority_keys": list(self.authority_keys),
            "fee_paid": self.fee_paid,
            "expiry_at": _ts(self.expiry_at),
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> PrefixRecord:
        return PrefixRecord(
            owner=data["owner"],
            prefix=data["prefix"],
            metadata_uri=data["metadata_uri"],
            metadata_hash=bytes.fromhex(data["metadata_hash"]),
            status=PrefixStatus(data["status"]),
            ref_hash=bytes.fromhex(data.get("ref_hash", ZERO_HASH.hex())),
            authority_keys=list(data.get("authority_keys", [])),
            fee_paid=int(data["fee_paid"]),
            expiry_at=_parse_ts(data.get("expiry_at")),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )


@dataclass(frozen=True)
class ProtocolState:
    """Singletons loaded for one operation.

    Passed explicitly into every engine operation instead of living as
    module globals, so the engine can run against any ledger store.
    """
    fee_registry: FeeRegistry
    roster: VerifierRoster
    treasury_address: str
