"""
Key material providers.

The exchange never touches key internals: it calls encrypt/decrypt on a
provider keyed by (protocol ID, key ID, counterparty). LocalKeyProvider is
a self-contained provider for one identity:

    shared secret = ECDH(own secp256k1 key, counterparty public key)
    content key   = HKDF-SHA256(shared secret, info="<level>-<protocol>-<key id>")
    ciphertext    = nonce (12 bytes) ++ AES-256-GCM(content key, plaintext)

Both parties derive the same content key, so a ciphertext the payee
produces for the payer is decryptable by the payer with the payee as
counterparty, and by nobody else.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import DecryptionError, EncryptionError, IdentityKeyError
from .storage import read_secret, write_secret

logger = logging.getLogger(__name__)

ProtocolID = tuple[int, str]

NONCE_SIZE = 12
TAG_SIZE = 16
_PRIVATE_KEY_SIZE = 32


class KeyMaterialProvider(Protocol):
    async def encrypt(
        self, plaintext: bytes, protocol_id: ProtocolID, key_id: str, counterparty: str
    ) -> bytes: ...

    async def decrypt(
        self, ciphertext: bytes, protocol_id: ProtocolID, key_id: str, counterparty: str
    ) -> bytes: ...


class LocalKeyProvider:
    """Encrypts and decrypts on behalf of a single secp256k1 identity."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        if not isinstance(private_key.curve, ec.SECP256K1):
            raise IdentityKeyError("Identity key must be on secp256k1")
        self._private_key = private_key

    @classmethod
    def generate(cls) -> LocalKeyProvider:
        return cls(ec.generate_private_key(ec.SECP256K1()))

    @classmethod
    def from_private_key_hex(cls, value: str) -> LocalKeyProvider:
        candidate = value.strip()
        if candidate.startswith("0x"):
            candidate = candidate[2:]
        if len(candidate) != _PRIVATE_KEY_SIZE * 2:
            raise IdentityKeyError("Private key must be a 32-byte hex string")
        try:
            secret = int(candidate, 16)
            key = ec.derive_private_key(secret, ec.SECP256K1())
        except ValueError as exc:
            raise IdentityKeyError(f"Invalid private key: {exc}") from exc
        return cls(key)

    @classmethod
    def load_or_create(cls, path: Path, env_key: Optional[str] = None) -> LocalKeyProvider:
        """Load the identity key from ``path``, creating it on first use.

        ``env_key`` (a hex private key) takes precedence over the file.
        """
        if env_key:
            return cls.from_private_key_hex(env_key)
        stored = read_secret(path)
        if stored:
            return cls.from_private_key_hex(stored)
        provider = cls.generate()
        write_secret(path, provider.private_key_hex())
        logger.info("Created identity key %s at %s", provider.identity, path)
        return provider

    def private_key_hex(self) -> str:
        return f"{self._private_key.private_numbers().private_value:064x}"

    @property
    def identity(self) -> str:
        """Compressed SEC1 public key, hex encoded."""
        return self._private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.CompressedPoint,
        ).hex()

    async def encrypt(
        self, plaintext: bytes, protocol_id: ProtocolID, key_id: str, counterparty: str
    ) -> bytes:
        try:
            key = self._content_key(protocol_id, key_id, counterparty)
        except IdentityKeyError as exc:
            raise EncryptionError(str(exc)) from exc
        nonce = os.urandom(NONCE_SIZE)
        return nonce + AESGCM(key).encrypt(nonce, bytes(plaintext), None)

    async def decrypt(
        self, ciphertext: bytes, protocol_id: ProtocolID, key_id: str, counterparty: str
    ) -> bytes:
        if len(ciphertext) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext too short")
        try:
            key = self._content_key(protocol_id, key_id, counterparty)
            nonce, sealed = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
            return AESGCM(key).decrypt(nonce, bytes(sealed), None)
        except (IdentityKeyError, InvalidTag) as exc:
            raise DecryptionError("Decryption failed") from exc

    def _content_key(self, protocol_id: ProtocolID, key_id: str, counterparty: str) -> bytes:
        peer = parse_identity(counterparty)
        shared = self._private_key.exchange(ec.ECDH(), peer)
        level, name = protocol_id
        info = f"{level}-{name}-{key_id}".encode()
        return HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=info).derive(shared)

    def __repr__(self) -> str:
        return f"LocalKeyProvider(identity={self.identity})"


def parse_identity(identity: str) -> ec.EllipticCurvePublicKey:
    """Parse a hex SEC1 secp256k1 public key."""
    try:
        raw = bytes.fromhex(identity.strip())
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), raw)
    except (ValueError, AttributeError) as exc:
        raise IdentityKeyError(f"Invalid identity key: {identity!r}") from exc
