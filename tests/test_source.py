"""Tests for notification sources."""

import asyncio
import json
from typing import Dict, List

import pytest

from solcmeta.chain import (
    Block,
    ChainCommitted,
    ChainReorged,
    ChainReverted,
    Deployment,
    notification_to_dict,
)
from solcmeta.consumer import MetadataConsumer
from solcmeta.cursor import ProgressCursor
from solcmeta.extract import Metadata
from solcmeta.indexer import run_pipeline
from solcmeta.sinks import BlockBatch, Sink
from solcmeta.source import ReplaySource, SourceError, Web3Source


def block_hash(number: int, fork: int) -> bytes:
    return bytes([fork]) + number.to_bytes(31, "big")


class FakeEth:
    """An in-memory chain exposing the handful of eth_* calls the source uses."""

    def __init__(self):
        self.blocks: Dict[int, dict] = {}
        self.receipts: Dict[bytes, dict] = {}
        self.code: Dict[str, bytes] = {}

    def build(self, start: int, end: int, fork: int = 1) -> None:
        for number in range(start, end + 1):
            parent_fork = fork if number > start else self.fork_of(number - 1)
            self.blocks[number] = {
                "number": number,
                "hash": block_hash(number, fork),
                "parentHash": block_hash(max(number - 1, 0), parent_fork),
                "transactions": [],
            }
        for number in [n for n in self.blocks if n > end]:
            del self.blocks[number]

    def fork_of(self, number: int) -> int:
        block = self.blocks.get(number)
        return block["hash"][0] if block else 1

    def deploy(self, number: int, address: str, code: bytes, status: int = 1) -> None:
        tx_hash = b"\xdd" + number.to_bytes(31, "big")
        self.blocks[number]["transactions"].append({"hash": tx_hash, "to": None})
        self.receipts[tx_hash] = {"status": status, "contractAddress": address}
        self.code[address] = code

    @property
    def block_number(self) -> int:
        return max(self.blocks)

    def get_block(self, number, full_transactions=False):
        return self.blocks[number]

    def get_transaction_receipt(self, tx_hash):
        return self.receipts[tx_hash]

    def get_code(self, address, block_identifier=None):
        return self.code[address]


class FakeWeb3:
    def __init__(self):
        self.eth = FakeEth()


@pytest.fixture
def web3() -> FakeWeb3:
    w3 = FakeWeb3()
    w3.eth.build(0, 3)
    return w3


def test_poll_commits_new_blocks(web3: FakeWeb3, solc_blob: bytes) -> None:
    web3.eth.deploy(2, "0x" + "ab" * 20, solc_blob)
    web3.eth.blocks[2]["transactions"].append({"hash": b"\x01" * 32, "to": "0x" + "cd" * 20})
    source = Web3Source(web3, start_block=0)

    notifications = source.poll()

    assert len(notifications) == 1
    committed = notifications[0]
    assert isinstance(committed, ChainCommitted)
    assert [b.number for b in committed.blocks] == [0, 1, 2, 3]
    deployments = committed.blocks[2].deployments
    assert deployments == (
        Deployment(
            tx_hash="0xdd" + (2).to_bytes(31, "big").hex(),
            address="0x" + "ab" * 20,
            code=solc_blob,
        ),
    )
    assert committed.blocks[1].hash == "0x" + block_hash(1, 1).hex()
    assert source.poll() == []


def test_poll_skips_failed_deployments(web3: FakeWeb3) -> None:
    web3.eth.deploy(1, "0x" + "ee" * 20, b"\x60\x80", status=0)
    committed = Web3Source(web3, start_block=1).poll()[0]
    assert committed.blocks[0].deployments == ()


def test_poll_respects_confirmations_and_batch_size(web3: FakeWeb3) -> None:
    source = Web3Source(web3, start_block=0, confirmations=1, max_blocks_per_poll=2)
    assert [b.number for b in source.poll()[0].blocks] == [0, 1]
    assert [b.number for b in source.poll()[0].blocks] == [2]
    assert source.poll() == []


def test_poll_starts_at_head_without_start_block(web3: FakeWeb3) -> None:
    committed = Web3Source(web3).poll()[0]
    assert [b.number for b in committed.blocks] == [3]


def test_poll_detects_reorg(web3: FakeWeb3) -> None:
    source = Web3Source(web3, start_block=0)
    source.poll()

    web3.eth.build(2, 4, fork=2)
    reverted, committed = source.poll()

    assert isinstance(reverted, ChainReverted)
    assert [b.number for b in reverted.blocks] == [2, 3]
    assert reverted.blocks[0].hash == "0x" + block_hash(2, 1).hex()
    assert isinstance(committed, ChainCommitted)
    assert [b.number for b in committed.blocks] == [2, 3, 4]
    assert committed.blocks[0].hash == "0x" + block_hash(2, 2).hex()


def test_reorg_survives_rpc_failure(web3: FakeWeb3, monkeypatch) -> None:
    source = Web3Source(web3, start_block=0)
    source.poll()
    web3.eth.build(2, 4, fork=2)
    get_block = web3.eth.get_block
    failures = [OSError("connection reset")]

    def flaky_get_block(number, full_transactions=False):
        if number == 2 and full_transactions and failures:
            raise failures.pop()
        return get_block(number, full_transactions)

    monkeypatch.setattr(web3.eth, "get_block", flaky_get_block)
    retained = dict(source.retained)

    with pytest.raises(OSError):
        source.poll()

    assert source.retained == retained
    assert source.next_height == 4

    reverted, committed = source.poll()
    assert isinstance(reverted, ChainReverted)
    assert [b.number for b in reverted.blocks] == [2, 3]
    assert isinstance(committed, ChainCommitted)
    assert [b.number for b in committed.blocks] == [2, 3, 4]


def test_commit_releases_old_history(web3: FakeWeb3) -> None:
    source = Web3Source(web3, start_block=0, reorg_depth=1)
    source.poll()
    source.commit(3)
    assert sorted(source.retained) == [2, 3]
    assert source.acknowledged == 3


class CollectingSink(Sink):
    def __init__(self):
        self.batches: List[BlockBatch] = []

    async def emit(self, batch: BlockBatch) -> None:
        self.batches.append(batch)


def replay_file(tmp_path, notifications) -> str:
    path = tmp_path / "replay.ndjson"
    path.write_text(
        "\n".join(json.dumps(notification_to_dict(n)) for n in notifications) + "\n"
    )
    return str(path)


@pytest.mark.asyncio
async def test_replay_pipeline(tmp_path, solc_blob: bytes) -> None:
    a1 = Block(1, "0xa1", "0xa0", (Deployment("0xt1", "0xc1", solc_blob),))
    a2 = Block(2, "0xa2", "0xa1")
    b2 = Block(2, "0xb2", "0xa1", (Deployment("0xt2", "0xc2", solc_blob),))
    path = replay_file(
        tmp_path,
        [
            ChainCommitted((a1,)),
            ChainReorged(old=(), new=(a2,)),
            ChainReverted((a2,)),
            ChainCommitted((b2,)),
        ],
    )
    source = ReplaySource(path)
    sink = CollectingSink()
    consumer = MetadataConsumer(sink, ProgressCursor(), source)

    await asyncio.wait_for(run_pipeline(source, consumer), timeout=2)

    assert [b.height for b in sink.batches] == [1, 2]
    assert sink.batches[1].block_hash == "0xa2"
    assert isinstance(sink.batches[0].entries[0].outcome, Metadata)
    assert source.acknowledged == 2


def test_replay_rejects_bad_line(tmp_path) -> None:
    path = tmp_path / "replay.ndjson"
    path.write_text('{"type": "committed", "blocks": []}\n{"type": "exploded"}\n')
    with pytest.raises(SourceError, match=":2:"):
        ReplaySource(path).read()
