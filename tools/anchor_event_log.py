#!/usr/bin/env python3
"""Anchor the registry event log head digest on an Ethereum network.

Computes the hash-chain head over every event in data/events.jsonl and
embeds it in a 0-value transaction, creating a timestamped public
witness that the log existed in exactly this form at this block.

Usage:
    python3 tools/anchor_event_log.py
    python3 tools/anchor_event_log.py path/to/data

Requires:
    RPC_URL and PRIVATE_KEY in a .env file at the project root.
    CHAIN_ID is optional (default: Sepolia).
"""

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from dotenv import load_dotenv
from prefix_registry.crypto.anchor import (
    DEFAULT_CHAIN_ID,
    anchor_to_chain,
    append_anchor_record,
    latest_anchor,
)
from prefix_registry.persistence.event_log import EventLog

load_dotenv(ROOT / ".env")

RPC_URL = os.getenv("RPC_URL")
PRIVATE_KEY = os.getenv("PRIVATE_KEY")
CHAIN_ID = int(os.getenv("CHAIN_ID", str(DEFAULT_CHAIN_ID)))

if not RPC_URL or not PRIVATE_KEY:
    print("ERROR: Missing RPC_URL and/or PRIVATE_KEY in .env")
    sys.exit(1)

data_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else ROOT / "data"
events_path = data_dir / "events.jsonl"
anchors_path = data_dir / "anchors.jsonl"

if not events_path.exists():
    print(f"ERROR: Event log not found: {events_path}")
    sys.exit(1)

log = EventLog(storage_path=events_path)
head = log.head_digest()

previous = latest_anchor(anchors_path)
if previous is not None and previous.head_digest == head:
    print(f"Event log unchanged since block {previous.block_number}; nothing to anchor.")
    sys.exit(0)

print("=" * 60)
print("PREFIX REGISTRY — EVENT LOG ANCHOR")
print("=" * 60)
print(f"  Events:       {log.count}")
print(f"  Head digest:  {head}")
print(f"  Chain ID:     {CHAIN_ID}")
print()

record = anchor_to_chain(
    head_digest=head,
    event_count=log.count,
    rpc_url=RPC_URL,
    private_key=PRIVATE_KEY,
    chain_id=CHAIN_ID,
    gas_price_gwei="10",
)
append_anchor_record(record, anchors_path)

print(f"  Tx:           {record.tx_hash}")
print(f"  Block:        {record.block_number}")
print(f"  Explorer:     {record.explorer_url}")
print(f"  Logged:       {anchors_path}")
