"""X.509 trust anchor and device certificate issuance.

Trust anchors are self-signed CA certificates bound to one application.
Device certificates are signed by the application's trust anchor key and
usable for both client and server TLS authentication.
"""

from __future__ import annotations

import datetime
import logging
import os
from pathlib import Path
from typing import TextIO

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from drg.certificates.schemas import (
    CERT_VALIDITY_DAYS,
    ORGANIZATION,
    TRUST_ANCHOR_UNIT,
    IssuedCertificate,
    SignAlgo,
)
from drg.crypto.keys import (
    PrivateKey,
    generate_private_key,
    parse_private_key,
    private_key_pem,
    public_key_bytes,
    signing_hash,
)
from drg.errors import InvalidInputError, KeyMismatchError

logger = logging.getLogger(__name__)

PRIVATE_KEY_HINT = (
    "Private key is printed below. Keep it secret: anyone holding it can sign "
    "certificates for this application. Use --key-output to write it to a file."
)


def _validity(days: int) -> tuple[datetime.datetime, datetime.datetime]:
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise InvalidInputError(f"validity must be a positive number of days, got {days!r}")
    now = datetime.datetime.now(datetime.timezone.utc)
    return now, now + datetime.timedelta(days=days)


def _resolve_key(
    algorithm: SignAlgo | None,
    key: PrivateKey | None,
) -> tuple[PrivateKey, bool]:
    """Return the subject key and whether it was generated here."""
    if key is not None:
        return key, False
    return generate_private_key(algorithm or SignAlgo.ECDSA), True


def issue_trust_anchor(
    app_id: str,
    *,
    days: int = CERT_VALIDITY_DAYS,
    algorithm: SignAlgo | None = None,
    key: PrivateKey | None = None,
) -> IssuedCertificate:
    """Create a self-signed CA certificate for ``app_id``."""
    not_before, not_after = _validity(days)
    private_key, generated = _resolve_key(algorithm, key)
    public_key = private_key.public_key()

    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, TRUST_ANCHOR_UNIT),
            x509.NameAttribute(NameOID.COMMON_NAME, app_id),
        ]
    )

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_cert_sign=True,
                crl_sign=True,
                key_encipherment=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .sign(private_key, signing_hash(private_key))
    )
    logger.info("Issued trust anchor for %s, valid until %s", app_id, not_after.isoformat())

    return IssuedCertificate(
        certificate_pem=cert.public_bytes(serialization.Encoding.PEM),
        private_key_pem=private_key_pem(private_key) if generated else None,
    )


def _load_ca_certificate(data: bytes) -> x509.Certificate:
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        raise InvalidInputError(f"cannot parse trust anchor certificate: {exc}") from exc


def issue_device_certificate(
    app_id: str,
    device_id: str,
    ca_key: bytes,
    ca_certificate: bytes,
    *,
    days: int = CERT_VALIDITY_DAYS,
    algorithm: SignAlgo | None = None,
    key: PrivateKey | None = None,
) -> IssuedCertificate:
    """Create a device certificate signed by the application's trust anchor.

    The CA key must belong to ``ca_certificate``; otherwise
    :class:`KeyMismatchError` is raised before anything is signed.
    """
    not_before, not_after = _validity(days)
    signer, _ = parse_private_key(ca_key)
    anchor = _load_ca_certificate(ca_certificate)
    if public_key_bytes(signer.public_key()) != public_key_bytes(anchor.public_key()):
        raise KeyMismatchError()

    private_key, generated = _resolve_key(algorithm, key)
    public_key = private_key.public_key()

    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, app_id),
            x509.NameAttribute(NameOID.COMMON_NAME, device_id),
        ]
    )

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(anchor.subject)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(signer.public_key()),
            critical=False,
        )
        .sign(signer, signing_hash(signer))
    )
    logger.info("Issued certificate for device %s in %s", device_id, app_id)

    return IssuedCertificate(
        certificate_pem=cert.public_bytes(serialization.Encoding.PEM),
        private_key_pem=private_key_pem(private_key) if generated else None,
    )


def write_pem(
    content: bytes,
    path: str | Path | None,
    *,
    stdout: TextIO,
    secret: bool = False,
    label: str = "Certificate",
) -> None:
    """Write ``content`` to ``path``, or print it with a short header."""
    if path:
        target = Path(path)
        target.write_bytes(content)
        if secret and os.name == "posix":
            target.chmod(0o600)
        print(f"{label} written to {target}", file=stdout)
        return
    if secret:
        print(PRIVATE_KEY_HINT, file=stdout)
    print(content.decode("ascii").rstrip("\n"), file=stdout)
