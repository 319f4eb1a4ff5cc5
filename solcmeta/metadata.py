"""
Locate and decode the CBOR metadata trailer solc appends to contract bytecode.

Solidity appends CBOR-encoded metadata at the end of the bytecode.
The format is: <bytecode><cbor-metadata><2-byte-length>
"""

import io
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

import cbor2

# Number of bytes that encode the length of the CBOR metadata
CBOR_LENGTH_LEN = 2

MAX_JSON_INT_BITS = 64

# Keys solc is known to emit, with the CBOR types they must decode to
KNOWN_FIELDS = {
    "ipfs": (bytes,),
    "bzzr0": (bytes,),
    "bzzr1": (bytes,),
    "experimental": (bool,),
    "solc": (bytes, str),
}


class DecodeError(Exception):
    """The located trailer does not hold a usable metadata map."""

    kind = "invalid"


class MalformedMetadata(DecodeError):
    kind = "malformed"


class NotAMapError(DecodeError):
    kind = "not_a_map"


@dataclass(frozen=True)
class MetadataTrailer:
    """The CBOR region ``blob[start:end]`` found through the trailing length field."""

    blob: bytes = field(repr=False)
    start: int
    end: int
    length: int

    @property
    def payload(self) -> bytes:
        return self.blob[self.start : self.end]

    @property
    def length_field(self) -> bytes:
        return self.blob[-CBOR_LENGTH_LEN:]


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def jsonable(value: Any) -> Any:
    """
    Convert a decoded CBOR value into something ``json.dumps`` always accepts.

    Bytes become 0x-hex and integers wider than 64 bits become hex strings,
    since str() refuses integers past the interpreter's digit limit.
    """
    if value is None or isinstance(value, (bool, float, str)):
        return value
    if isinstance(value, int):
        return value if value.bit_length() <= MAX_JSON_INT_BITS else hex(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {_json_key(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [jsonable(v) for v in value]
    if isinstance(value, cbor2.CBORTag):
        return {"tag": value.tag, "value": jsonable(value.value)}
    try:
        return repr(value)
    except ValueError:
        return f"<{type(value).__name__}>"


def _json_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    return json.dumps(jsonable(key))


@dataclass(frozen=True)
class MetadataRecord:
    """Decoded solc metadata. Unknown keys are kept in ``extra``."""

    ipfs: Optional[bytes] = None
    bzzr0: Optional[bytes] = None
    bzzr1: Optional[bytes] = None
    experimental: Optional[bool] = None
    solc: Optional[Union[bytes, str]] = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def compiler_version(self) -> Optional[str]:
        """
        Release builds store the version as three bytes (major, minor, patch),
        prerelease builds as the full version string.
        """
        if self.solc is None:
            return None
        if isinstance(self.solc, str):
            return self.solc
        if len(self.solc) == 3:
            return ".".join(str(part) for part in self.solc)
        return "0x" + self.solc.hex()

    @property
    def swarm_hash(self) -> Optional[bytes]:
        return self.bzzr1 if self.bzzr1 is not None else self.bzzr0

    def as_dict(self) -> Dict[str, Any]:
        """Rebuild the CBOR map this record was decoded from."""
        out: Dict[str, Any] = {}
        for key in KNOWN_FIELDS:
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        out.update(_thaw(self.extra))
        return out

    def to_json(self) -> Dict[str, Any]:
        out = jsonable(self.as_dict())
        if self.compiler_version is not None:
            out["compiler_version"] = self.compiler_version
        return out


def locate_trailer(blob: Union[bytes, bytearray, memoryview]) -> Optional[MetadataTrailer]:
    """
    Find the length-prefixed CBOR region at the tail of ``blob``.

    Returns None when no trailer can exist: the blob is shorter than the
    length field, the declared length is zero, or it runs past the start of
    the blob. A located trailer is only a candidate until it decodes.
    """
    data = bytes(blob)
    if len(data) < CBOR_LENGTH_LEN:
        return None

    # Read the length (big-endian, 2 bytes)
    length = int.from_bytes(data[-CBOR_LENGTH_LEN:], byteorder="big")
    end = len(data) - CBOR_LENGTH_LEN
    start = end - length
    if length == 0 or start < 0:
        return None

    return MetadataTrailer(blob=data, start=start, end=end, length=length)


def decode_metadata(trailer: MetadataTrailer) -> MetadataRecord:
    """
    Decode the trailer payload as a single text-keyed CBOR map.

    Raises:
        MalformedMetadata: the payload is not valid CBOR, does not span exactly
            the declared length, or a known key has the wrong type
        NotAMapError: the top-level value is not a map keyed by text strings
    """
    payload = trailer.payload
    stream = io.BytesIO(payload)
    try:
        value = cbor2.CBORDecoder(stream).decode()
    except cbor2.CBORDecodeError as e:
        raise MalformedMetadata(f"Failed to decode CBOR metadata: {e}") from e
    except RecursionError as e:
        raise MalformedMetadata("CBOR metadata is nested too deeply") from e

    consumed = stream.tell()
    if consumed != len(payload):
        raise MalformedMetadata(
            f"CBOR value spans {consumed} bytes, trailer declares {len(payload)}"
        )

    if not isinstance(value, dict):
        raise NotAMapError(f"Expected a CBOR map, got {type(value).__name__}")

    known: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise NotAMapError(f"Metadata map has a non-text key: {key!r}")
        expected = KNOWN_FIELDS.get(key)
        if expected is None:
            extra[key] = item
            continue
        if not isinstance(item, expected):
            raise MalformedMetadata(
                f"Field {key!r} has type {type(item).__name__}, "
                f"expected {' or '.join(t.__name__ for t in expected)}"
            )
        known[key] = item

    return MetadataRecord(extra=_freeze(extra), **known)
