"""Signed deliverable (DLC) bundles.

A signed deliverable is any JSON object plus a top-level detached signature
record:

    "dlcSignature": {
      "algorithm": "ECDSA_P256_SHA256",
      "publicKeyPem": "-----BEGIN PUBLIC KEY-----...",
      "signatureHex": "<hex of DER ECDSA signature>",
      "signedAt": "2026-01-10T00:00:00.000Z"
    }

The signature covers the canonical JSON of every field EXCEPT `dlcSignature`.
The public key is embedded, so verification is self-contained; it proves the
bundle is unmodified since signing by the holder of that key, not that the
key is trusted.

Verification fails closed: only ECDSA_P256_SHA256 is recognized and there is
no fallback algorithm. Malformed records produce valid=False with an error,
never an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from . import metrics
from .canonical import canonical_bytes
from .crypto import EcdsaP256KeyPair
from .errors import (
    TSError,
    ts_error,
    TS_E_BAD_REQUEST,
    TS_E_SIG_ALGORITHM,
    TS_E_SIG_MALFORMED,
    TS_E_SIG_MISSING,
)
from .schema import validate_dlc_signature
from .timeutil import iso_utc


logger = logging.getLogger("ts_kernel.dlc")

DLC_SIGNATURE_FIELD = "dlcSignature"
DLC_ALGORITHM = "ECDSA_P256_SHA256"


@dataclass
class SignatureVerification:
    valid: bool
    algorithm: Optional[str] = None
    signed_at: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"valid": self.valid, "algorithm": self.algorithm, "signedAt": self.signed_at}
        if self.error_code:
            d["error"] = {"code": self.error_code, "message": self.error}
        return d


def split_signed_bundle(bundle: Mapping[str, Any]) -> Tuple[Dict[str, Any], Any]:
    """Return (payload, signature_record); the payload never includes the record."""
    payload = {k: v for k, v in bundle.items() if k != DLC_SIGNATURE_FIELD}
    return payload, bundle.get(DLC_SIGNATURE_FIELD)


def sign_bundle(
    payload: Mapping[str, Any],
    keypair: EcdsaP256KeyPair,
    *,
    signed_at: Optional[str] = None,
) -> Dict[str, Any]:
    """Sign a JSON object, returning a copy with a `dlcSignature` record.

    Any existing signature record on the input is replaced.
    """
    if not isinstance(payload, Mapping):
        raise ts_error(TS_E_BAD_REQUEST, "payload must be a JSON object", got=type(payload).__name__)
    unsigned, _ = split_signed_bundle(payload)
    signature = keypair.sign(canonical_bytes(unsigned))
    signed = dict(unsigned)
    signed[DLC_SIGNATURE_FIELD] = {
        "algorithm": DLC_ALGORITHM,
        "publicKeyPem": keypair.public_key_pem,
        "signatureHex": signature.hex(),
        "signedAt": signed_at or iso_utc(),
    }
    return signed


def _fail(code: str, message: str, *, algorithm: Optional[str] = None, signed_at: Optional[str] = None) -> SignatureVerification:
    logger.info("signature rejected: %s: %s", code, message)
    metrics.record_signature_verification("error")
    return SignatureVerification(False, algorithm=algorithm, signed_at=signed_at, error_code=code, error=message)


def verify_signed_bundle(bundle: Any) -> SignatureVerification:
    """Verify the detached signature of a signed deliverable."""
    if not isinstance(bundle, Mapping):
        return _fail(TS_E_SIG_MALFORMED, "signed bundle is not a JSON object")

    payload, record = split_signed_bundle(bundle)
    if record is None:
        return _fail(TS_E_SIG_MISSING, "no dlcSignature field found; not a signed bundle")

    if not isinstance(record, Mapping):
        return _fail(TS_E_SIG_MALFORMED, "dlcSignature is not an object")

    algorithm = record.get("algorithm")
    signed_at = record.get("signedAt") if isinstance(record.get("signedAt"), str) else None
    if algorithm != DLC_ALGORITHM:
        return _fail(TS_E_SIG_ALGORITHM, f"unknown algorithm: {algorithm}", algorithm=algorithm, signed_at=signed_at)

    ok_schema, schema_msgs = validate_dlc_signature(record)
    if not ok_schema:
        detail = "; ".join(m.detail for m in schema_msgs if not m.ok)
        return _fail(TS_E_SIG_MALFORMED, detail, algorithm=algorithm, signed_at=signed_at)

    try:
        signature = bytes.fromhex(record["signatureHex"])
    except ValueError as e:
        return _fail(TS_E_SIG_MALFORMED, f"signatureHex is not hex: {e}", algorithm=algorithm, signed_at=signed_at)
    try:
        decode_dss_signature(signature)
    except ValueError as e:
        return _fail(TS_E_SIG_MALFORMED, f"signature is not a DER ECDSA signature: {e}", algorithm=algorithm, signed_at=signed_at)

    try:
        message = canonical_bytes(payload)
        key = EcdsaP256KeyPair(key_id="embedded", public_key_pem=record["publicKeyPem"])
        valid = key.verify(message, signature)
    except TSError as e:
        return _fail(e.code, e.message, algorithm=algorithm, signed_at=signed_at)

    metrics.record_signature_verification("valid" if valid else "invalid")
    if not valid:
        logger.info("signature verification failed; bundle may have been tampered with")
    return SignatureVerification(valid, algorithm=algorithm, signed_at=signed_at)
