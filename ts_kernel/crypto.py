"""
Thingstead Kernel Cryptography Module

SHA-256 digests over canonical JSON, and ECDSA P-256 key pairs for signed
deliverable (DLC) bundles.

The verifier side only ever needs a PUBLIC key: signed deliverables embed the
signer's SPKI PEM, so a bundle can be checked without any key registry.
Authorship is established by comparing that PEM against a key the reader
already trusts; this module does not make that decision.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .canonical import canonical_bytes
from .errors import ts_error, TS_E_SIG_MALFORMED


DIGEST_HEX_LEN = 64


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def stable_hash(value: Any, *, max_depth: Optional[int] = None) -> str:
    """SHA-256 hex digest of the canonical encoding of a JSON value."""
    return sha256_hex(canonical_bytes(value, max_depth=max_depth))


def _load_p256_public_key(pem: str) -> ec.EllipticCurvePublicKey:
    try:
        key = serialization.load_pem_public_key(str(pem).encode("utf-8"))
    except (ValueError, TypeError) as e:
        raise ts_error(TS_E_SIG_MALFORMED, f"public key is not a valid PEM: {e}") from e
    if not isinstance(key, ec.EllipticCurvePublicKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ts_error(TS_E_SIG_MALFORMED, "public key is not an ECDSA P-256 key", got=type(key).__name__)
    return key


@dataclass
class EcdsaP256KeyPair:
    """
    ECDSA P-256 key pair for signing and verifying deliverables.

    Keys are carried as PEM text (SPKI for the public half, PKCS#8 for the
    private half) because that is the form embedded in signed bundles.
    """
    key_id: str
    public_key_pem: str
    private_key_pem: Optional[str] = None  # Only for signing/testing

    @classmethod
    def generate(cls, key_id: str = "ephemeral") -> "EcdsaP256KeyPair":
        """Generate a new P-256 key pair."""
        private_key = ec.generate_private_key(ec.SECP256R1())
        return cls._from_private_key(key_id, private_key)

    @classmethod
    def from_private_pem(cls, key_id: str, private_key_pem: str) -> "EcdsaP256KeyPair":
        try:
            private_key = serialization.load_pem_private_key(str(private_key_pem).encode("utf-8"), password=None)
        except (ValueError, TypeError) as e:
            raise ts_error(TS_E_SIG_MALFORMED, f"private key is not a valid PEM: {e}") from e
        if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not isinstance(private_key.curve, ec.SECP256R1):
            raise ts_error(TS_E_SIG_MALFORMED, "private key is not an ECDSA P-256 key")
        return cls._from_private_key(key_id, private_key)

    @classmethod
    def from_public_pem(cls, key_id: str, public_key_pem: str) -> "EcdsaP256KeyPair":
        """Create key pair with public key only (for verification)."""
        _load_p256_public_key(public_key_pem)
        return cls(key_id=key_id, public_key_pem=str(public_key_pem))

    @classmethod
    def _from_private_key(cls, key_id: str, private_key: ec.EllipticCurvePrivateKey) -> "EcdsaP256KeyPair":
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        return cls(key_id=key_id, public_key_pem=public_pem, private_key_pem=private_pem)

    def can_sign(self) -> bool:
        """Check if this key pair can sign (has private key)."""
        return self.private_key_pem is not None

    def sign(self, message: bytes) -> bytes:
        """Sign a message; returns a DER-encoded ECDSA signature over SHA-256(message)."""
        if not self.can_sign():
            raise ValueError(f"Key {self.key_id} has no private key - cannot sign")
        private_key = serialization.load_pem_private_key(self.private_key_pem.encode("utf-8"), password=None)
        return private_key.sign(message, ec.ECDSA(hashes.SHA256()))

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Verify a DER signature with the public key.

        Raises TSError only when the public key itself is unusable; a
        signature that does not verify (including malformed DER) is False.
        """
        public_key = _load_p256_public_key(self.public_key_pem)
        try:
            public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
            return True
        except InvalidSignature:
            return False
