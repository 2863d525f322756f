"""rift.crypto

Ed25519 helpers shared by the schema layer (signed payloads), the VM
(``CHKSIGNU``) and the harness (signing test messages).

Profile / invariants:
- Keys are raw 32-byte Ed25519 keys; contracts store public keys as uint256.
- The signed message is always a 32-byte cell representation hash.
- Verification never raises on a bad signature or malformed key; it returns
  False so callers can map it onto an exit code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey


SIGNATURE_BYTES = 64
SIGNATURE_BITS = SIGNATURE_BYTES * 8


@dataclass(frozen=True)
class KeyPair:
    private_key: bytes
    public_key: bytes

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls.from_seed(
            Ed25519PrivateKey.generate().private_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PrivateFormat.Raw,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )

    @classmethod
    def from_seed(cls, seed: bytes) -> "KeyPair":
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        sk = Ed25519PrivateKey.from_private_bytes(seed)
        pub = sk.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(private_key=seed, public_key=pub)

    @property
    def public_key_int(self) -> int:
        return int.from_bytes(self.public_key, "big")

    def sign(self, digest: bytes) -> bytes:
        return sign_digest(digest, self.private_key)


def _key_bytes(key: Union[bytes, int]) -> bytes:
    if isinstance(key, int):
        if not 0 <= key < (1 << 256):
            raise ValueError("Public key integer must fit 256 bits")
        return key.to_bytes(32, "big")
    return bytes(key)


def sign_digest(digest: bytes, private_key: bytes) -> bytes:
    """Sign a 32-byte digest with a raw Ed25519 seed."""
    if len(digest) != 32:
        raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
    return Ed25519PrivateKey.from_private_bytes(private_key).sign(digest)


def verify_digest(digest: bytes, signature: bytes, public_key: Union[bytes, int]) -> bool:
    """Check an Ed25519 signature over a 32-byte digest."""
    if len(signature) != SIGNATURE_BYTES:
        return False
    try:
        pub = Ed25519PublicKey.from_public_bytes(_key_bytes(public_key))
    except ValueError:
        return False
    try:
        pub.verify(signature, digest)
    except InvalidSignature:
        return False
    return True
