from __future__ import annotations

import binascii
import hashlib
from typing import Iterable, Mapping, Optional, Sequence, Union

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from ledger_harness.utils.exceptions import InvalidSignatureException

# ASN.1 DER prefixes for Ed25519 keys (PKCS#8 private, SubjectPublicKeyInfo public).
ED25519_PRIVATE_DER_PREFIX = "302e020100300506032b657004220420"
ED25519_PUBLIC_DER_PREFIX = "302a300506032b6570032100"

# Public key raw bytes -> Ed25519 signature over a frozen body.
SignatureMap = Mapping[bytes, bytes]


def _decode_hex_key(value: str, *, der_prefix: str, kind: str) -> bytes:
    text = (value or "").strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if text.startswith(der_prefix):
        text = text[len(der_prefix) :]
    try:
        raw = binascii.unhexlify(text)
    except (binascii.Error, ValueError) as e:
        raise InvalidSignatureException(f"Invalid Ed25519 {kind} key encoding: {e}")
    if len(raw) != 32:
        raise InvalidSignatureException(
            f"Invalid Ed25519 {kind} key length",
            details={"bytes": len(raw)},
        )
    return raw


class PublicKey:
    """Ed25519 verification key."""

    __slots__ = ("_verify_key",)

    def __init__(self, verify_key: VerifyKey):
        self._verify_key = verify_key

    @classmethod
    def from_bytes(cls, raw: bytes) -> "PublicKey":
        try:
            return cls(VerifyKey(bytes(raw)))
        except Exception as e:
            raise InvalidSignatureException(f"Invalid public key: {str(e)}")

    @classmethod
    def from_string(cls, value: str) -> "PublicKey":
        """Parse raw hex or DER hex."""
        return cls.from_bytes(_decode_hex_key(value, der_prefix=ED25519_PUBLIC_DER_PREFIX, kind="public"))

    def to_bytes(self) -> bytes:
        return bytes(self._verify_key)

    def to_string_raw(self) -> str:
        return self.to_bytes().hex()

    def to_string_der(self) -> str:
        return ED25519_PUBLIC_DER_PREFIX + self.to_string_raw()

    def verify(self, message: bytes, signature: bytes) -> bool:
        try:
            self._verify_key.verify(message, signature)
            return True
        except (BadSignatureError, ValueError):
            return False

    def is_satisfied_by(self, message: bytes, signatures: SignatureMap) -> bool:
        signature = signatures.get(self.to_bytes())
        return signature is not None and self.verify(message, signature)

    def public_keys(self) -> list["PublicKey"]:
        return [self]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())

    def __repr__(self) -> str:
        return f"PublicKey({self.to_string_raw()[:16]}…)"

    def __str__(self) -> str:
        return self.to_string_der()


class PrivateKey:
    """Ed25519 signing key, the authorizing half of an account reference."""

    __slots__ = ("_signing_key",)

    def __init__(self, signing_key: SigningKey):
        self._signing_key = signing_key

    @classmethod
    def generate(cls) -> "PrivateKey":
        return cls(SigningKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "PrivateKey":
        if len(seed) != 32:
            raise InvalidSignatureException("Ed25519 seed must be 32 bytes", details={"bytes": len(seed)})
        return cls(SigningKey(seed))

    @classmethod
    def from_string_ed25519(cls, value: str) -> "PrivateKey":
        """Parse a private key given as raw hex or PKCS#8 DER hex."""
        return cls.from_seed(_decode_hex_key(value, der_prefix=ED25519_PRIVATE_DER_PREFIX, kind="private"))

    @property
    def public_key(self) -> PublicKey:
        return PublicKey(self._signing_key.verify_key)

    def sign(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature

    def to_string_raw(self) -> str:
        return bytes(self._signing_key).hex()

    def to_string_der(self) -> str:
        return ED25519_PRIVATE_DER_PREFIX + self.to_string_raw()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return bytes(self._signing_key) == bytes(other._signing_key)

    def __hash__(self) -> int:
        return hash(bytes(self._signing_key))

    def __repr__(self) -> str:
        # Never print key material.
        return f"PrivateKey(public={self.public_key.to_string_raw()[:16]}…)"


class KeyList:
    """M-of-N threshold key; `threshold=None` requires every key."""

    __slots__ = ("keys", "threshold")

    def __init__(self, keys: Sequence["Key"], threshold: Optional[int] = None):
        if not keys:
            raise InvalidSignatureException("KeyList requires at least one key")
        if threshold is not None and not (1 <= threshold <= len(keys)):
            raise InvalidSignatureException(
                "KeyList threshold out of range",
                details={"threshold": threshold, "keys": len(keys)},
            )
        members = list(keys)
        for i, key in enumerate(members):
            if key in members[:i]:
                raise InvalidSignatureException(
                    "KeyList members must be distinct",
                    details={"duplicate": repr(key)},
                )
        self.keys: list[Key] = members
        self.threshold = threshold

    def is_satisfied_by(self, message: bytes, signatures: SignatureMap) -> bool:
        required = len(self.keys) if self.threshold is None else self.threshold
        satisfied = 0
        for key in self.keys:
            if key.is_satisfied_by(message, signatures):
                satisfied += 1
                if satisfied >= required:
                    return True
        return False

    def public_keys(self) -> list[PublicKey]:
        out: list[PublicKey] = []
        for key in self.keys:
            out.extend(key.public_keys())
        return out

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyList):
            return NotImplemented
        return self.threshold == other.threshold and self.keys == other.keys

    def __repr__(self) -> str:
        return f"KeyList(threshold={self.threshold}, keys={self.keys!r})"


Key = Union[PublicKey, KeyList]


def signature_map(message: bytes, signers: Iterable[PrivateKey]) -> dict[bytes, bytes]:
    return {signer.public_key.to_bytes(): signer.sign(message) for signer in signers}


def deterministic_private_key(seed: str, index: int) -> PrivateKey:
    """Derive an Ed25519 key from `seed:index` so test pools are reproducible."""
    material = f"{seed}:{index}".encode()
    return PrivateKey.from_seed(hashlib.sha256(material).digest())
