"""Bytes in, metadata record or diagnostic out."""

from dataclasses import dataclass
from typing import Optional, Union

from solcmeta.cid import ContentIdentifier, EncodeError, encode_cid, swarm_uri
from solcmeta.metadata import (
    DecodeError,
    MetadataRecord,
    decode_metadata,
    locate_trailer,
)


@dataclass(frozen=True)
class Metadata:
    record: MetadataRecord
    cid: Optional[ContentIdentifier] = None
    cid_error: Optional[str] = None

    @property
    def reference(self) -> Optional[str]:
        """The off-chain metadata location, IPFS preferred over Swarm."""
        if self.cid is not None:
            return self.cid.uri
        if self.record.swarm_hash is not None:
            return swarm_uri(self.record.swarm_hash)
        return None


@dataclass(frozen=True)
class NoTrailer:
    """The blob carries no metadata trailer (e.g. compiled without metadata)."""


@dataclass(frozen=True)
class Invalid:
    """A trailer was located but its payload is not a metadata map."""

    kind: str
    message: str

    @classmethod
    def from_error(cls, error: DecodeError) -> "Invalid":
        return cls(kind=error.kind, message=str(error))


ExtractionOutcome = Union[Metadata, NoTrailer, Invalid]


def extract(blob: Union[bytes, bytearray, memoryview]) -> ExtractionOutcome:
    trailer = locate_trailer(blob)
    if trailer is None:
        return NoTrailer()

    try:
        record = decode_metadata(trailer)
    except DecodeError as e:
        return Invalid.from_error(e)

    if record.ipfs is None:
        return Metadata(record=record)

    # A bad IPFS reference does not invalidate the rest of the record
    try:
        return Metadata(record=record, cid=encode_cid(record.ipfs))
    except EncodeError as e:
        return Metadata(record=record, cid_error=str(e))
