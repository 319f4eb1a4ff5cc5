"""Content identifiers for the metadata references embedded by solc."""

from dataclasses import dataclass

import base58

# 0x12 = SHA-256, 0x20 = 32 bytes length
SHA2_256 = 0x12
MULTIHASH_PREFIX_LEN = 2


class EncodeError(Exception):
    pass


class TruncatedMultihash(EncodeError):
    pass


@dataclass(frozen=True)
class ContentIdentifier:
    """A multihash rendered as a CIDv0 (bare base58btc, no multibase prefix)."""

    code: int
    length: int
    digest: bytes

    @property
    def multihash(self) -> bytes:
        return bytes((self.code, self.length)) + self.digest

    @property
    def uri(self) -> str:
        return f"ipfs://{self}"

    def __str__(self) -> str:
        return base58.b58encode(self.multihash).decode("utf-8")


def encode_cid(multihash: bytes) -> ContentIdentifier:
    """
    Interpret ``multihash`` as <function code><digest length><digest>.

    Raises:
        TruncatedMultihash: fewer digest bytes than the declared length
        EncodeError: bytes left over after the declared digest
    """
    multihash = bytes(multihash)
    if len(multihash) < MULTIHASH_PREFIX_LEN:
        raise TruncatedMultihash(f"Multihash too short: {len(multihash)} bytes")

    code, length = multihash[0], multihash[1]
    digest = multihash[MULTIHASH_PREFIX_LEN:]
    if len(digest) < length:
        raise TruncatedMultihash(
            f"Multihash declares a {length}-byte digest, only {len(digest)} present"
        )
    if len(digest) > length:
        raise EncodeError(
            f"Multihash has {len(digest) - length} trailing bytes after its digest"
        )
    return ContentIdentifier(code=code, length=length, digest=digest)


def swarm_uri(digest: bytes) -> str:
    return f"bzz://{bytes(digest).hex()}"
