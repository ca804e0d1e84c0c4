"""
Signature verification — check that the reference manifest was signed.

Blob signatures (annotation or ConfigMap material):
    The signature is base64 over the exact message text as stored.
    The public key comes from ``--key`` (PEM) or, without one, from the
    attached PEM certificate. ECDSA (SHA-256), RSA PKCS#1 v1.5 (SHA-256)
    and Ed25519 keys are supported.

    The signer is the certificate's SAN e-mail / URI (else subject CN)
    when the certificate key did the verifying, and empty for a bare
    key. The signing time is the certificate's not-before.

Image signatures:
    Delegated to ``cosign verify``.

An invalid signature is a ``valid=False`` verdict. Only a failure to
run the check at all raises.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import NameOID

from kubeverify.adapters.base import (
    CollaboratorError,
    SignatureMaterialError,
    SignatureVerdict,
    SignatureVerifier,
)
from kubeverify.adapters.shell.command import run_command, stderr_text

logger = logging.getLogger(__name__)

_PEM_PREFIX = "-----BEGIN"
_NO_SIGNATURE_MARKERS = ("no matching signatures", "no signatures found")

PublicKey = ec.EllipticCurvePublicKey | rsa.RSAPublicKey | ed25519.Ed25519PublicKey


# ═══════════════════════════════════════════════════════════════════
#  Key material
# ═══════════════════════════════════════════════════════════════════


def _pem_bytes(value: str) -> bytes:
    """Accept PEM text or base64-encoded PEM."""
    if value.lstrip().startswith(_PEM_PREFIX):
        return value.encode("utf-8")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SignatureMaterialError(f"certificate is neither PEM nor base64: {e}") from e


def load_public_key(pem: bytes) -> PublicKey:
    try:
        key = serialization.load_pem_public_key(pem)
    except ValueError as e:
        raise SignatureMaterialError(f"invalid public key: {e}") from e
    if not isinstance(key, (ec.EllipticCurvePublicKey, rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
        raise SignatureMaterialError(f"unsupported key type: {type(key).__name__}")
    return key


def load_certificate(value: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(_pem_bytes(value))
    except ValueError as e:
        raise SignatureMaterialError(f"invalid certificate: {e}") from e


def signer_from_certificate(cert: x509.Certificate) -> str:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = None
    if san is not None:
        emails = san.get_values_for_type(x509.RFC822Name)
        if emails:
            return emails[0]
        uris = san.get_values_for_type(x509.UniformResourceIdentifier)
        if uris:
            return uris[0]
    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(common_names[0].value) if common_names else ""


def verify_blob(message: bytes, signature: bytes, key: PublicKey) -> bool:
    """True if ``signature`` is valid for ``message`` under ``key``."""
    try:
        if isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
        elif isinstance(key, rsa.RSAPublicKey):
            key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
        else:
            key.verify(signature, message)
    except InvalidSignature:
        return False
    return True


# ═══════════════════════════════════════════════════════════════════
#  Verifiers
# ═══════════════════════════════════════════════════════════════════


class BlobSignatureVerifier(SignatureVerifier):
    """Verifies a message/signature pair, with a key file or a certificate.

    Args:
        message: The signed message text (as stored).
        signature: Base64 signature over ``message``.
        certificate: Optional PEM (or base64 PEM) certificate.
        key_path: Optional path to a PEM public key; takes precedence.
    """

    def __init__(
        self,
        message: str | None,
        signature: str | None,
        certificate: str | None = None,
        key_path: str | None = None,
    ):
        self.message = message
        self.signature = signature
        self.certificate = certificate
        self.key_path = key_path

    def verify(self) -> SignatureVerdict:
        if not self.message or not self.signature:
            logger.debug("No message/signature material, signature not valid")
            return SignatureVerdict(valid=False)

        try:
            sig_bytes = base64.b64decode(self.signature, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SignatureMaterialError(f"signature is not valid base64: {e}") from e

        signer = ""
        signed_at: int | None = None
        if self.key_path:
            key = load_public_key(Path(self.key_path).read_bytes())
        elif self.certificate:
            cert = load_certificate(self.certificate)
            key = load_public_key(cert.public_key().public_bytes(
                serialization.Encoding.PEM,
                serialization.PublicFormat.SubjectPublicKeyInfo,
            ))
            signer = signer_from_certificate(cert)
            signed_at = int(cert.not_valid_before_utc.timestamp())
        else:
            logger.debug("Neither key nor certificate available, signature not valid")
            return SignatureVerdict(valid=False)

        valid = verify_blob(self.message.encode("utf-8"), sig_bytes, key)
        logger.debug("Blob signature valid=%s signer=%r", valid, signer)
        return SignatureVerdict(valid=valid, signer=signer, signed_at=signed_at)


class ImageSignatureVerifier(SignatureVerifier):
    """Verifies an OCI image signature with ``cosign verify``."""

    def __init__(self, image_ref: str, key_path: str | None = None, timeout: int = 120):
        self.image_ref = image_ref
        self.key_path = key_path
        self.timeout = timeout

    def verify(self) -> SignatureVerdict:
        args = ["cosign", "verify"]
        if self.key_path:
            args.extend(["--key", self.key_path])
        args.extend([self.image_ref, "--output", "json"])

        result = run_command(args, timeout=self.timeout)
        if result.returncode != 0:
            err = stderr_text(result)
            if any(marker in err.lower() for marker in _NO_SIGNATURE_MARKERS):
                return SignatureVerdict(valid=False)
            raise CollaboratorError(f"cosign verify {self.image_ref} failed: {err}")

        return parse_cosign_verify_output(result.stdout)


def parse_cosign_verify_output(stdout: bytes) -> SignatureVerdict:
    """Read signer and signing time from the first verified signature."""
    try:
        entries: Any = json.loads(stdout)
    except ValueError as e:
        raise CollaboratorError(f"unexpected cosign output: {e}") from e
    if not isinstance(entries, list) or not entries:
        return SignatureVerdict(valid=False)

    entry = entries[0]
    if not isinstance(entry, dict):
        raise CollaboratorError(f"unexpected cosign output: entry is {type(entry).__name__}")
    optional = entry.get("optional") or {}
    if not isinstance(optional, dict):
        raise CollaboratorError("unexpected cosign output: malformed optional")
    bundle = optional.get("Bundle") or {}
    if not isinstance(bundle, dict):
        raise CollaboratorError("unexpected cosign output: malformed optional.Bundle")
    payload = bundle.get("Payload") or {}
    if not isinstance(payload, dict):
        raise CollaboratorError("unexpected cosign output: malformed optional.Bundle.Payload")

    signer = str(optional.get("Subject", "") or "")
    integrated = payload.get("integratedTime")
    try:
        signed_at = int(integrated) if integrated is not None else None
    except (TypeError, ValueError) as e:
        raise CollaboratorError(f"unexpected cosign output: integratedTime {integrated!r}") from e
    return SignatureVerdict(valid=True, signer=signer, signed_at=signed_at)
