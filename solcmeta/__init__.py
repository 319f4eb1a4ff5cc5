"""Extract and index the metadata trailer solc appends to contract bytecode."""

from solcmeta.cid import ContentIdentifier, EncodeError, TruncatedMultihash, encode_cid
from solcmeta.extract import ExtractionOutcome, Invalid, Metadata, NoTrailer, extract
from solcmeta.metadata import (
    DecodeError,
    MalformedMetadata,
    MetadataRecord,
    MetadataTrailer,
    NotAMapError,
    decode_metadata,
    locate_trailer,
)

__version__ = "0.1.0"

__all__ = [
    "ContentIdentifier",
    "DecodeError",
    "EncodeError",
    "ExtractionOutcome",
    "Invalid",
    "MalformedMetadata",
    "Metadata",
    "MetadataRecord",
    "MetadataTrailer",
    "NoTrailer",
    "NotAMapError",
    "TruncatedMultihash",
    "decode_metadata",
    "encode_cid",
    "extract",
    "locate_trailer",
]
