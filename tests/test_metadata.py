"""Tests for trailer location and CBOR metadata decoding."""

import json

import cbor2
import pytest

from solcmeta.metadata import (
    MalformedMetadata,
    MetadataRecord,
    NotAMapError,
    decode_metadata,
    locate_trailer,
)

MULTIHASH = b"\x12\x20" + bytes(range(32))


@pytest.mark.parametrize("blob", [b"", b"\x00", b"\x33"])
def test_locate_short_blob(blob: bytes) -> None:
    assert locate_trailer(blob) is None


@pytest.mark.parametrize(
    "blob",
    [
        b"\x00\x01",
        b"\x60\x00\x02",
        b"\x60\x01\x60\x02\xff\xff",
    ],
)
def test_locate_length_past_start(blob: bytes) -> None:
    assert locate_trailer(blob) is None


def test_locate_zero_length() -> None:
    assert locate_trailer(bytes(10)) is None


def test_locate_range() -> None:
    blob = bytes.fromhex("600160020003")
    trailer = locate_trailer(blob)
    assert trailer is not None
    assert trailer.length == 3
    assert (trailer.start, trailer.end) == (1, 4)
    assert trailer.payload == bytes.fromhex("016002")
    assert trailer.length_field == b"\x00\x03"


def test_locate_payload_fills_blob() -> None:
    blob = b"\xa0\x00\x01"
    trailer = locate_trailer(blob)
    assert trailer is not None
    assert trailer.start == 0
    assert trailer.payload == b"\xa0"


def test_locate_accepts_bytearray() -> None:
    trailer = locate_trailer(bytearray(b"\xa0\x00\x01"))
    assert trailer is not None
    assert isinstance(trailer.blob, bytes)


def test_decode_solc_trailer(solc_blob: bytes) -> None:
    record = decode_metadata(locate_trailer(solc_blob))
    assert record.ipfs == MULTIHASH
    assert record.solc == b"\x00\x08\x13"
    assert record.compiler_version == "0.8.19"
    assert record.experimental is None
    assert dict(record.extra) == {}


def test_decode_not_cbor() -> None:
    # The payload decodes as the integer 1 followed by stray bytes
    trailer = locate_trailer(bytes.fromhex("600160020003"))
    with pytest.raises(MalformedMetadata):
        decode_metadata(trailer)


def test_decode_truncated_cbor() -> None:
    payload = cbor2.dumps({"ipfs": MULTIHASH})[:-1]
    trailer = locate_trailer(payload + len(payload).to_bytes(2, "big"))
    with pytest.raises(MalformedMetadata):
        decode_metadata(trailer)


def test_decode_trailing_bytes() -> None:
    payload = cbor2.dumps({"solc": b"\x00\x08\x13"}) + b"\x00"
    trailer = locate_trailer(payload + len(payload).to_bytes(2, "big"))
    with pytest.raises(MalformedMetadata, match="spans"):
        decode_metadata(trailer)


@pytest.mark.parametrize("value", [[1, 2], "ipfs", 7, b"\x12\x20"])
def test_decode_not_a_map(value) -> None:
    payload = cbor2.dumps(value)
    trailer = locate_trailer(payload + len(payload).to_bytes(2, "big"))
    with pytest.raises(NotAMapError):
        decode_metadata(trailer)


def test_decode_non_text_key(make_blob) -> None:
    trailer = locate_trailer(make_blob({1: b"\x00"}))
    with pytest.raises(NotAMapError):
        decode_metadata(trailer)


@pytest.mark.parametrize(
    "metadata",
    [
        {"ipfs": "QmNotBytes"},
        {"bzzr1": 12},
        {"experimental": 1},
        {"solc": [0, 8, 19]},
    ],
)
def test_decode_known_field_type(make_blob, metadata) -> None:
    with pytest.raises(MalformedMetadata, match="has type"):
        decode_metadata(locate_trailer(make_blob(metadata)))


def test_decode_unknown_keys_preserved(make_blob) -> None:
    metadata = {
        "bzzr1": bytes(32),
        "experimental": True,
        "solc": "0.8.20-nightly.2023.5.1",
        "future": {"nested": [1, 2, b"\xff"]},
    }
    record = decode_metadata(locate_trailer(make_blob(metadata)))
    assert record.experimental is True
    assert record.compiler_version == "0.8.20-nightly.2023.5.1"
    assert record.extra["future"]["nested"] == (1, 2, b"\xff")
    assert record.as_dict() == metadata


def test_record_is_immutable(make_blob) -> None:
    record = decode_metadata(locate_trailer(make_blob({"other": {"a": 1}})))
    with pytest.raises(TypeError):
        record.extra["other"] = 2
    with pytest.raises(AttributeError):
        record.ipfs = b""


def test_record_swarm_hash() -> None:
    assert MetadataRecord(bzzr0=b"\x01").swarm_hash == b"\x01"
    assert MetadataRecord(bzzr0=b"\x01", bzzr1=b"\x02").swarm_hash == b"\x02"
    assert MetadataRecord().swarm_hash is None


def test_record_to_json() -> None:
    record = MetadataRecord(ipfs=b"\x12\x20\xab", solc=b"\x00\x06\x0c")
    assert record.to_json() == {
        "ipfs": "0x1220ab",
        "solc": "0x00060c",
        "compiler_version": "0.6.12",
    }


def test_record_to_json_wide_values(make_blob) -> None:
    metadata = {
        "huge": cbor2.CBORTag(2, b"\xff" * 2000),
        "small": 2 ** 40,
        "tagged": cbor2.CBORTag(4000, [1, b"\x01"]),
        "keys": {1: "one", b"\x02": "two"},
    }
    record = decode_metadata(locate_trailer(make_blob(metadata)))

    out = record.to_json()

    assert out["huge"] == hex(2 ** 16000 - 1)
    assert out["small"] == 2 ** 40
    assert out["tagged"] == {"tag": 4000, "value": [1, "0x01"]}
    assert out["keys"] == {"1": "one", '"0x02"': "two"}
    json.dumps(out)
