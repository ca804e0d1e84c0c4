"""
Tests for signature_verify — blob verification with keys and
certificates, and cosign output parsing.

Keys and certificates are generated in-process with cryptography;
cosign is never executed.
"""

from __future__ import annotations

import base64
import json
import subprocess
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import NameOID

from kubeverify.adapters.base import CollaboratorError, SignatureMaterialError
from kubeverify.core.services.signature_verify import (
    BlobSignatureVerifier,
    ImageSignatureVerifier,
    load_certificate,
    parse_cosign_verify_output,
    signer_from_certificate,
    verify_blob,
)

_MODULE = "kubeverify.core.services.signature_verify"
_MESSAGE = "H4sIAAAAAAAA/8rMS8tMTUkFBAAA//8="
_NOT_BEFORE = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


def _sign_ec(key: ec.EllipticCurvePrivateKey, message: str) -> str:
    return base64.b64encode(key.sign(message.encode(), ec.ECDSA(hashes.SHA256()))).decode()


def _public_pem(key) -> bytes:
    return key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _certificate(key, *, email: str | None = None, uri: str | None = None, cn: str = "signer") -> str:
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(_NOT_BEFORE)
        .not_valid_after(_NOT_BEFORE + timedelta(minutes=10))
    )
    names: list[x509.GeneralName] = []
    if email:
        names.append(x509.RFC822Name(email))
    if uri:
        names.append(x509.UniformResourceIdentifier(uri))
    if names:
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
    cert = builder.sign(key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def key_file(tmp_path: Path, ec_key) -> str:
    path = tmp_path / "cosign.pub"
    path.write_bytes(_public_pem(ec_key))
    return str(path)


# ═══════════════════════════════════════════════════════════════════
#  Primitives
# ═══════════════════════════════════════════════════════════════════


class TestVerifyBlob:
    def test_ecdsa(self, ec_key):
        sig = ec_key.sign(b"msg", ec.ECDSA(hashes.SHA256()))
        assert verify_blob(b"msg", sig, ec_key.public_key())
        assert not verify_blob(b"other", sig, ec_key.public_key())

    def test_rsa(self):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        sig = key.sign(b"msg", padding.PKCS1v15(), hashes.SHA256())
        assert verify_blob(b"msg", sig, key.public_key())
        assert not verify_blob(b"other", sig, key.public_key())

    def test_ed25519(self):
        key = ed25519.Ed25519PrivateKey.generate()
        sig = key.sign(b"msg")
        assert verify_blob(b"msg", sig, key.public_key())
        assert not verify_blob(b"other", sig, key.public_key())


class TestCertificates:
    def test_signer_prefers_email(self, ec_key):
        cert = load_certificate(_certificate(ec_key, email="alice@example.com", uri="https://ci.example.com"))
        assert signer_from_certificate(cert) == "alice@example.com"

    def test_signer_uri(self, ec_key):
        cert = load_certificate(_certificate(ec_key, uri="https://github.com/acme/repo/.github/workflows/sign.yml@refs/heads/main"))
        assert signer_from_certificate(cert).startswith("https://github.com/acme/repo")

    def test_signer_falls_back_to_cn(self, ec_key):
        cert = load_certificate(_certificate(ec_key, cn="build-bot"))
        assert signer_from_certificate(cert) == "build-bot"

    def test_base64_pem_accepted(self, ec_key):
        pem = _certificate(ec_key, email="a@b.c")
        cert = load_certificate(base64.b64encode(pem.encode()).decode())
        assert signer_from_certificate(cert) == "a@b.c"

    def test_garbage_certificate(self):
        with pytest.raises(SignatureMaterialError):
            load_certificate("not a certificate")


# ═══════════════════════════════════════════════════════════════════
#  Blob verifier
# ═══════════════════════════════════════════════════════════════════


class TestBlobSignatureVerifier:
    def test_valid_with_key(self, ec_key, key_file):
        verdict = BlobSignatureVerifier(_MESSAGE, _sign_ec(ec_key, _MESSAGE), key_path=key_file).verify()
        assert verdict.valid is True
        assert verdict.signer == ""
        assert verdict.signed_at is None

    def test_invalid_with_key(self, ec_key, key_file):
        sig = _sign_ec(ec_key, "something else")
        assert BlobSignatureVerifier(_MESSAGE, sig, key_path=key_file).verify().valid is False

    def test_wrong_key(self, key_file):
        other = ec.generate_private_key(ec.SECP256R1())
        verdict = BlobSignatureVerifier(_MESSAGE, _sign_ec(other, _MESSAGE), key_path=key_file).verify()
        assert verdict.valid is False

    def test_valid_with_certificate(self, ec_key):
        cert = _certificate(ec_key, email="alice@example.com")
        verdict = BlobSignatureVerifier(_MESSAGE, _sign_ec(ec_key, _MESSAGE), certificate=cert).verify()
        assert verdict.valid is True
        assert verdict.signer == "alice@example.com"
        assert verdict.signed_at == int(_NOT_BEFORE.timestamp())

    def test_invalid_with_certificate_keeps_signer(self, ec_key):
        cert = _certificate(ec_key, email="alice@example.com")
        verdict = BlobSignatureVerifier(_MESSAGE, _sign_ec(ec_key, "something else"), certificate=cert).verify()
        assert verdict.valid is False
        assert verdict.signer == "alice@example.com"
        assert verdict.signed_at == int(_NOT_BEFORE.timestamp())

    def test_key_takes_precedence_over_certificate(self, ec_key, key_file):
        cert_key = ec.generate_private_key(ec.SECP256R1())
        cert = _certificate(cert_key, email="mallory@evil.io")
        verdict = BlobSignatureVerifier(
            _MESSAGE, _sign_ec(ec_key, _MESSAGE), certificate=cert, key_path=key_file,
        ).verify()
        assert verdict.valid is True
        assert verdict.signer == ""

    def test_missing_material_is_invalid(self, key_file):
        assert BlobSignatureVerifier(None, None, key_path=key_file).verify().valid is False
        assert BlobSignatureVerifier(_MESSAGE, "", key_path=key_file).verify().valid is False

    def test_no_key_and_no_certificate(self, ec_key):
        assert BlobSignatureVerifier(_MESSAGE, _sign_ec(ec_key, _MESSAGE)).verify().valid is False

    def test_signature_not_base64(self, key_file):
        with pytest.raises(SignatureMaterialError):
            BlobSignatureVerifier(_MESSAGE, "%%%", key_path=key_file).verify()

    def test_missing_key_file(self, ec_key, tmp_path):
        with pytest.raises(OSError):
            BlobSignatureVerifier(_MESSAGE, _sign_ec(ec_key, _MESSAGE), key_path=str(tmp_path / "nope.pub")).verify()

    def test_bad_key_file(self, ec_key, tmp_path):
        bad = tmp_path / "bad.pub"
        bad.write_text("not a key")
        with pytest.raises(SignatureMaterialError):
            BlobSignatureVerifier(_MESSAGE, _sign_ec(ec_key, _MESSAGE), key_path=str(bad)).verify()


# ═══════════════════════════════════════════════════════════════════
#  Image verifier
# ═══════════════════════════════════════════════════════════════════


def _cosign_output(subject: str = "alice@example.com", integrated_time: int | None = 1700000000) -> bytes:
    optional: dict = {"Subject": subject}
    if integrated_time is not None:
        optional["Bundle"] = {"Payload": {"integratedTime": integrated_time}}
    return json.dumps([{"critical": {}, "optional": optional}]).encode()


class TestParseCosignVerifyOutput:
    def test_subject_and_time(self):
        verdict = parse_cosign_verify_output(_cosign_output())
        assert verdict.valid is True
        assert verdict.signer == "alice@example.com"
        assert verdict.signed_at == 1700000000

    def test_without_bundle(self):
        assert parse_cosign_verify_output(_cosign_output(integrated_time=None)).signed_at is None

    def test_empty_list(self):
        assert parse_cosign_verify_output(b"[]").valid is False

    def test_not_json(self):
        with pytest.raises(CollaboratorError):
            parse_cosign_verify_output(b"Verification for ... --")

    def test_null_payload(self):
        verdict = parse_cosign_verify_output(b'[{"optional": {"Subject": "a@b.c", "Bundle": {"Payload": null}}}]')
        assert verdict.signer == "a@b.c"
        assert verdict.signed_at is None

    @pytest.mark.parametrize("stdout", [
        b'["not-an-entry"]',
        b'[{"optional": "x"}]',
        b'[{"optional": {"Bundle": ["x"]}}]',
        b'[{"optional": {"Bundle": {"Payload": 7}}}]',
        b'[{"optional": {"Bundle": {"Payload": {"integratedTime": "soon"}}}}]',
    ])
    def test_malformed_shape(self, stdout):
        with pytest.raises(CollaboratorError, match="unexpected cosign output"):
            parse_cosign_verify_output(stdout)


class TestImageSignatureVerifier:
    def test_command_with_key(self):
        done = subprocess.CompletedProcess(args=[], returncode=0, stdout=_cosign_output(), stderr=b"")
        with patch(f"{_MODULE}.run_command", return_value=done) as mock_run:
            verdict = ImageSignatureVerifier("ghcr.io/acme/m:v1", key_path="cosign.pub").verify()
        assert mock_run.call_args[0][0] == [
            "cosign", "verify", "--key", "cosign.pub", "ghcr.io/acme/m:v1", "--output", "json",
        ]
        assert verdict.valid is True

    def test_no_matching_signatures_is_invalid(self):
        done = subprocess.CompletedProcess(
            args=[], returncode=1, stdout=b"", stderr=b"Error: no matching signatures:\n",
        )
        with patch(f"{_MODULE}.run_command", return_value=done):
            assert ImageSignatureVerifier("ghcr.io/acme/m:v1").verify().valid is False

    def test_other_failure_raises(self):
        done = subprocess.CompletedProcess(args=[], returncode=1, stdout=b"", stderr=b"MANIFEST_UNKNOWN")
        with patch(f"{_MODULE}.run_command", return_value=done):
            with pytest.raises(CollaboratorError, match="MANIFEST_UNKNOWN"):
                ImageSignatureVerifier("ghcr.io/acme/m:v1").verify()
