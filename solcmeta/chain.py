"""
Chain notifications delivered by an execution client.

A notification either commits a segment of blocks, reverts a previously
committed one, or does both (a reorg). Each block carries the contracts
created in it together with their runtime bytecode.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union


@dataclass(frozen=True)
class Deployment:
    tx_hash: str
    address: str
    code: bytes = b""


@dataclass(frozen=True)
class Block:
    number: int
    hash: str
    parent_hash: str
    deployments: Tuple[Deployment, ...] = ()


@dataclass(frozen=True)
class ChainCommitted:
    blocks: Tuple[Block, ...]


@dataclass(frozen=True)
class ChainReverted:
    blocks: Tuple[Block, ...]


@dataclass(frozen=True)
class ChainReorged:
    old: Tuple[Block, ...]
    new: Tuple[Block, ...]


ChainNotification = Union[ChainCommitted, ChainReverted, ChainReorged]


def _hex_to_bytes(value: str) -> bytes:
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def block_from_dict(data: Dict[str, Any]) -> Block:
    return Block(
        number=int(data["number"]),
        hash=data["hash"],
        parent_hash=data.get("parent_hash", ""),
        deployments=tuple(
            Deployment(
                tx_hash=d["tx_hash"],
                address=d["address"],
                code=_hex_to_bytes(d.get("code", "")),
            )
            for d in data.get("deployments", [])
        ),
    )


def block_to_dict(block: Block) -> Dict[str, Any]:
    return {
        "number": block.number,
        "hash": block.hash,
        "parent_hash": block.parent_hash,
        "deployments": [
            {"tx_hash": d.tx_hash, "address": d.address, "code": "0x" + d.code.hex()}
            for d in block.deployments
        ],
    }


def notification_from_dict(data: Dict[str, Any]) -> ChainNotification:
    """
    Parse the JSON form used by replay files::

        {"type": "committed", "blocks": [...]}
        {"type": "reverted", "blocks": [...]}
        {"type": "reorged", "old": [...], "new": [...]}

    Raises:
        ValueError: unknown notification type
    """
    kind = data.get("type")
    if kind == "committed":
        return ChainCommitted(tuple(block_from_dict(b) for b in data["blocks"]))
    if kind == "reverted":
        return ChainReverted(tuple(block_from_dict(b) for b in data["blocks"]))
    if kind == "reorged":
        return ChainReorged(
            old=tuple(block_from_dict(b) for b in data["old"]),
            new=tuple(block_from_dict(b) for b in data["new"]),
        )
    raise ValueError(f"Unknown notification type: {kind!r}")


def notification_to_dict(notification: ChainNotification) -> Dict[str, Any]:
    if isinstance(notification, ChainCommitted):
        return {"type": "committed", "blocks": [block_to_dict(b) for b in notification.blocks]}
    if isinstance(notification, ChainReverted):
        return {"type": "reverted", "blocks": [block_to_dict(b) for b in notification.blocks]}
    return {
        "type": "reorged",
        "old": [block_to_dict(b) for b in notification.old],
        "new": [block_to_dict(b) for b in notification.new],
    }
