"""
Notification sources.

Web3Source follows a node over JSON-RPC and turns new blocks into
ChainCommitted notifications, emitting ChainReverted when the canonical
chain no longer contains blocks it has already delivered. ReplaySource reads
previously recorded notifications from an NDJSON file.
"""

import asyncio
import json
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from solcmeta.chain import (
    Block,
    ChainCommitted,
    ChainNotification,
    ChainReverted,
    Deployment,
    notification_from_dict,
)
from solcmeta.log import get_logger


class SourceError(Exception):
    pass


def connect(rpc_url: str) -> Web3:
    web3 = Web3(Web3.HTTPProvider(rpc_url))
    if not web3.is_connected():
        raise SourceError(f"Failed to connect to RPC endpoint: {rpc_url}")
    return web3


def fetch_bytecode(rpc_url: str, contract_address: str) -> bytes:
    """
    Fetch the runtime bytecode of one contract.

    Raises:
        SourceError: If connection fails, the address is invalid or holds no code
    """
    web3 = connect(rpc_url)

    if not web3.is_address(contract_address):
        raise SourceError(f"Invalid contract address: {contract_address}")

    try:
        bytecode = web3.eth.get_code(web3.to_checksum_address(contract_address))
    except Exception as e:
        raise SourceError(f"Error fetching bytecode from RPC: {e}") from e

    if bytecode == b"" or bytecode == b"\x00":
        raise SourceError(f"No bytecode found at address: {contract_address}")
    return bytes(bytecode)


class Web3Source:
    """Polls an execution client for new blocks and the contracts they create."""

    def __init__(
        self,
        web3: Web3,
        start_block: Optional[int] = None,
        confirmations: int = 0,
        poll_interval: float = 2.0,
        reorg_depth: int = 64,
        max_blocks_per_poll: int = 100,
    ):
        self.web3 = web3
        self.next_height = start_block
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self.reorg_depth = reorg_depth
        self.max_blocks_per_poll = max_blocks_per_poll
        self.acknowledged: Optional[int] = None
        # Delivered blocks still eligible for reversion, by height
        self.retained: Dict[int, Block] = {}
        # commit() runs on the event loop while poll() runs in a worker thread
        self._lock = threading.Lock()
        self.log = get_logger(__name__)

    def commit(self, height: int) -> None:
        """Acknowledge ``height``; history older than the reorg window is released."""
        with self._lock:
            self.acknowledged = height
            self._prune()

    def _prune(self) -> None:
        if self.acknowledged is None:
            return
        floor = self.acknowledged - self.reorg_depth
        for number in [n for n in self.retained if n < floor]:
            del self.retained[number]

    def _safe_head(self) -> int:
        return int(self.web3.eth.block_number) - self.confirmations

    def _load_block(self, number: int) -> Block:
        raw = self.web3.eth.get_block(number, full_transactions=True)
        deployments = []
        for tx in raw["transactions"]:
            if tx.get("to") is not None:
                continue
            tx_hash = Web3.to_hex(tx["hash"])
            receipt = self.web3.eth.get_transaction_receipt(tx["hash"])
            address = receipt.get("contractAddress")
            if receipt.get("status") != 1 or not address:
                continue
            code = self.web3.eth.get_code(address, block_identifier=number)
            deployments.append(Deployment(tx_hash=tx_hash, address=address, code=bytes(code)))
        return Block(
            number=int(raw["number"]),
            hash=Web3.to_hex(raw["hash"]),
            parent_hash=Web3.to_hex(raw["parentHash"]),
            deployments=tuple(deployments),
        )

    def _canonical_hash(self, number: int) -> str:
        return Web3.to_hex(self.web3.eth.get_block(number)["hash"])

    def _find_orphans(self, retained: Dict[int, Block]) -> List[Block]:
        """Walk back through retained blocks until one is still canonical."""
        orphaned = []
        for number in sorted(retained, reverse=True):
            block = retained[number]
            if self._canonical_hash(number) == block.hash:
                break
            orphaned.append(block)
        return list(reversed(orphaned))

    def poll(self) -> List[ChainNotification]:
        """
        Fetch what is new since the last poll. Blocking; runs off the event loop.

        Progress and retained history are only updated once every request of
        the poll has succeeded, so an RPC error part way through a reorg leaves
        the orphaned blocks in place to be detected and reverted again.
        """
        head = self._safe_head()
        start = self.next_height if self.next_height is not None else max(head, 0)
        if start > head:
            self.next_height = start
            return []

        with self._lock:
            retained = dict(self.retained)
        notifications: List[ChainNotification] = []
        committed: List[Block] = []
        last = min(head, start + self.max_blocks_per_poll - 1)
        number = start
        while number <= last:
            block = self._load_block(number)
            parent = retained.get(number - 1)
            if parent is not None and block.parent_hash != parent.hash:
                if committed:
                    notifications.append(ChainCommitted(tuple(committed)))
                    committed = []
                orphaned = self._find_orphans(retained)
                if not orphaned:
                    # Head moved between requests; fetch again next poll
                    self.log.warning("parent_mismatch", height=number)
                    break
                for stale in orphaned:
                    del retained[stale.number]
                self.log.warning(
                    "reorg_detected",
                    height=number,
                    fork_point=orphaned[0].number - 1,
                    depth=len(orphaned),
                )
                notifications.append(ChainReverted(tuple(orphaned)))
                number = orphaned[0].number
                continue
            retained[number] = block
            committed.append(block)
            number += 1

        if committed:
            notifications.append(ChainCommitted(tuple(committed)))
        with self._lock:
            self.retained = retained
            self._prune()
        self.next_height = number
        return notifications

    async def run(self, queue: asyncio.Queue, stop: asyncio.Event) -> None:
        self.log.info("source_started", next_height=self.next_height)
        while not stop.is_set():
            try:
                notifications = await asyncio.to_thread(self.poll)
            except (OSError, requests.exceptions.RequestException, Web3Exception) as e:
                self.log.warning("poll_failed", next_height=self.next_height, error=str(e))
                notifications = []
            for notification in notifications:
                await queue.put(notification)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass


class ReplaySource:
    """Feeds recorded notifications from an NDJSON file, then ends the stream."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.acknowledged: Optional[int] = None
        self.log = get_logger(__name__)

    def commit(self, height: int) -> None:
        self.acknowledged = height

    def read(self) -> List[ChainNotification]:
        notifications = []
        with open(self.path, "r") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    notifications.append(notification_from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    raise SourceError(f"{self.path}:{lineno}: {e}") from e
        return notifications

    async def run(self, queue: asyncio.Queue, stop: asyncio.Event) -> None:
        notifications = self.read()
        self.log.info("replay_started", path=str(self.path), notifications=len(notifications))
        for notification in notifications:
            if stop.is_set():
                break
            await queue.put(notification)
        await queue.put(None)
