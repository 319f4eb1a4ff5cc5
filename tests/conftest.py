"""Test configuration."""

import logging
from typing import Any, Callable, Dict, Iterator

import cbor2
import pytest
import structlog
from structlog.testing import LogCapture

# 0x12 = SHA-256, 0x20 = 32 bytes length
DIGEST = bytes(range(32))
MULTIHASH = b"\x12\x20" + DIGEST
RUNTIME_PREFIX = bytes.fromhex("6080604052348015600f57600080fd5b50")


def append_trailer(code: bytes, payload: bytes) -> bytes:
    return code + payload + len(payload).to_bytes(2, "big")


@pytest.fixture
def make_blob() -> Callable[[Dict[str, Any]], bytes]:
    """Bytecode carrying ``metadata`` as a solc-style CBOR trailer."""

    def factory(metadata: Dict[str, Any], code: bytes = RUNTIME_PREFIX) -> bytes:
        return append_trailer(code, cbor2.dumps(metadata))

    return factory


@pytest.fixture
def solc_blob() -> bytes:
    """Runtime code as emitted by solc 0.8.19 with an IPFS metadata hash."""
    trailer = (
        "a2646970667358221220"
        + DIGEST.hex()
        + "64736f6c63430008130033"
    )
    return RUNTIME_PREFIX + bytes.fromhex(trailer)


@pytest.fixture
def log_output() -> Iterator[LogCapture]:
    """Capture structlog events emitted during a test."""
    capture = LogCapture()
    structlog.configure(processors=[capture])
    yield capture
    structlog.reset_defaults()


@pytest.fixture
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()
