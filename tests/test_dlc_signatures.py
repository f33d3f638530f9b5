import copy

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ts_kernel.crypto import EcdsaP256KeyPair
from ts_kernel.dlc import DLC_ALGORITHM, DLC_SIGNATURE_FIELD, sign_bundle, split_signed_bundle, verify_signed_bundle
from ts_kernel.errors import (
    TSError,
    TS_E_BAD_REQUEST,
    TS_E_SIG_ALGORITHM,
    TS_E_SIG_MALFORMED,
    TS_E_SIG_MISSING,
)


SIGNED_AT = "2026-01-10T00:00:00.000Z"


@pytest.fixture(scope="module")
def keypair():
    return EcdsaP256KeyPair.generate("test")


@pytest.fixture
def signed(keypair):
    payload = {"title": "Barn plan", "version": 3, "sections": [{"h": "Scope", "body": "ü"}]}
    return sign_bundle(payload, keypair, signed_at=SIGNED_AT)


def test_sign_then_verify(signed, keypair):
    rec = signed[DLC_SIGNATURE_FIELD]
    assert rec["algorithm"] == DLC_ALGORITHM
    assert rec["publicKeyPem"] == keypair.public_key_pem

    result = verify_signed_bundle(signed)
    assert result.valid
    assert result.error_code is None
    assert result.to_dict() == {"valid": True, "algorithm": DLC_ALGORITHM, "signedAt": SIGNED_AT}


def test_key_order_does_not_matter(signed):
    reordered = dict(reversed(list(signed.items())))
    assert verify_signed_bundle(reordered).valid


def test_mutated_payload_fails(signed):
    signed["version"] = 4
    result = verify_signed_bundle(signed)
    assert not result.valid
    assert result.error_code is None
    assert result.algorithm == DLC_ALGORITHM


def test_signature_from_other_key_fails(signed):
    other = EcdsaP256KeyPair.generate("other")
    signed[DLC_SIGNATURE_FIELD]["publicKeyPem"] = other.public_key_pem
    assert not verify_signed_bundle(signed).valid


def test_unknown_algorithm_fails_closed(signed):
    signed[DLC_SIGNATURE_FIELD]["algorithm"] = "ED25519"
    result = verify_signed_bundle(signed)
    assert not result.valid
    assert result.error_code == TS_E_SIG_ALGORITHM
    assert result.to_dict()["error"]["code"] == TS_E_SIG_ALGORITHM


def test_missing_signature_record():
    result = verify_signed_bundle({"title": "unsigned"})
    assert not result.valid
    assert result.error_code == TS_E_SIG_MISSING


@pytest.mark.parametrize("sig_hex", ["zz", "abc", "00ff00ff"])
def test_malformed_signature_hex_or_der(signed, sig_hex):
    signed[DLC_SIGNATURE_FIELD]["signatureHex"] = sig_hex
    result = verify_signed_bundle(signed)
    assert not result.valid
    assert result.error_code == TS_E_SIG_MALFORMED


def test_malformed_public_key(signed):
    signed[DLC_SIGNATURE_FIELD]["publicKeyPem"] = "-----BEGIN PUBLIC KEY-----\nnope\n-----END PUBLIC KEY-----\n"
    result = verify_signed_bundle(signed)
    assert not result.valid
    assert result.error_code == TS_E_SIG_MALFORMED


def test_non_p256_public_key_rejected(signed):
    p384 = ec.generate_private_key(ec.SECP384R1()).public_key()
    pem = p384.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    signed[DLC_SIGNATURE_FIELD]["publicKeyPem"] = pem
    result = verify_signed_bundle(signed)
    assert result.error_code == TS_E_SIG_MALFORMED


@pytest.mark.parametrize("record", ["sig", {"algorithm": DLC_ALGORITHM}, {"algorithm": DLC_ALGORITHM, "publicKeyPem": 1, "signatureHex": "00"}])
def test_malformed_record(record):
    result = verify_signed_bundle({"title": "x", DLC_SIGNATURE_FIELD: record})
    assert not result.valid
    assert result.error_code == TS_E_SIG_MALFORMED


def test_non_object_bundle():
    assert verify_signed_bundle(["x"]).error_code == TS_E_SIG_MALFORMED


def test_resigning_replaces_existing_record(signed):
    other = EcdsaP256KeyPair.generate("other")
    resigned = sign_bundle(signed, other)
    assert resigned[DLC_SIGNATURE_FIELD]["publicKeyPem"] == other.public_key_pem
    assert verify_signed_bundle(resigned).valid
    payload, _ = split_signed_bundle(resigned)
    assert DLC_SIGNATURE_FIELD not in payload


def test_sign_does_not_mutate_input(keypair):
    payload = {"a": 1}
    before = copy.deepcopy(payload)
    sign_bundle(payload, keypair)
    assert payload == before
    with pytest.raises(TSError) as ei:
        sign_bundle(["not", "an", "object"], keypair)
    assert ei.value.code == TS_E_BAD_REQUEST


def test_keypair_pem_round_trip(keypair):
    restored = EcdsaP256KeyPair.from_private_pem("restored", keypair.private_key_pem)
    assert restored.public_key_pem == keypair.public_key_pem
    sig = restored.sign(b"msg")
    verifier = EcdsaP256KeyPair.from_public_pem("v", keypair.public_key_pem)
    assert not verifier.can_sign()
    assert verifier.verify(b"msg", sig)
    assert not verifier.verify(b"other", sig)


def test_lone_surrogate_payload_signs_and_verifies(keypair):
    signed = sign_bundle({"t": "x\udc00"}, keypair, signed_at=SIGNED_AT)
    assert verify_signed_bundle(signed).valid

    signed["t"] = "x\ud800"
    result = verify_signed_bundle(signed)
    assert not result.valid
    assert result.error_code is None
