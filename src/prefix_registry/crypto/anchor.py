"""Audit anchoring — witnesses the registry event log on a public chain.

The event log head digest (a hash chain over every event hash, see
EventLog.head_digest) is embedded in the data field of a 0-value
self-send transaction. Anyone holding a copy of the log can recompute
the digest and compare it with the anchored value to prove the log has
not been rewritten since that block.

No contract code runs on-chain; the chain only serves as a timestamped
witness.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


DEFAULT_CHAIN_ID = 11155111  # Sepolia

EXPLORERS = {
    1: "https://etherscan.io/tx/",
    11155111: "https://sepolia.etherscan.io/tx/",
}


@dataclass(frozen=True)
class AnchorRecord:
    """A record of a successful anchor of the event log head."""
    head_digest: str
    event_count: int
    tx_hash: str
    block_number: int
    chain_id: int
    timestamp_utc: str
    explorer_url: str


def digest_bytes(head_digest: str) -> bytes:
    """Raw 32 bytes of a ``sha256:<hex>`` digest."""
    raw = bytes.fromhex(head_digest.removeprefix("sha256:"))
    if len(raw) != 32:
        raise ValueError(f"Expected a 32-byte digest, got {len(raw)} bytes")
    return raw


def anchor_to_chain(
    head_digest: str,
    event_count: int,
    rpc_url: str,
    private_key: str,
    chain_id: int = DEFAULT_CHAIN_ID,
    gas: int = 30_000,
    gas_price_gwei: str = "2",
    timeout: int = 300,
) -> AnchorRecord:
    """Anchor the event log head digest by embedding it in a transaction.

    Sends a 0-ETH self-send with the digest in the data field and waits
    for one confirmation.
    """
    from web3 import Web3, HTTPProvider
    from eth_account import Account

    w3 = Web3(HTTPProvider(rpc_url))
    acct = Account.from_key(private_key)

    nonce = w3.eth.get_transaction_count(acct.address)
    tx = {
        "to": acct.address,
        "value": 0,
        "gas": gas,
        "gasPrice": w3.to_wei(gas_price_gwei, "gwei"),
        "nonce": nonce,
        "chainId": chain_id,
        "data": digest_bytes(head_digest),
    }

    signed = acct.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

    explorer = EXPLORERS.get(chain_id, "")
    return AnchorRecord(
        head_digest=head_digest,
        event_count=event_count,
        tx_hash=tx_hash.hex(),
        block_number=receipt.blockNumber,
        chain_id=chain_id,
        timestamp_utc=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        explorer_url=f"{explorer}{tx_hash.hex()}" if explorer else "",
    )


def append_anchor_record(record: AnchorRecord, path: Path) -> None:
    """Append an anchor record to a JSONL ledger of anchors."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(asdict(record), sort_keys=True) + "\n")


def load_anchor_records(path: Path) -> list[AnchorRecord]:
    if not path.exists():
        return []
    records: list[AnchorRecord] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(AnchorRecord(**json.loads(line)))
    return records


def latest_anchor(path: Path) -> Optional[AnchorRecord]:
    records = load_anchor_records(path)
    return records[-1] if records else None
