"""Private key generation, loading and classification."""

from __future__ import annotations

from pathlib import Path
from typing import Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from drg.certificates.schemas import SignAlgo
from drg.errors import InvalidInputError

PrivateKey = Union[ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey, rsa.RSAPrivateKey]
PublicKey = Union[ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey, rsa.RSAPublicKey]

RSA_KEY_SIZE = 2048


def generate_private_key(algorithm: SignAlgo) -> PrivateKey:
    if algorithm is SignAlgo.ECDSA:
        return ec.generate_private_key(ec.SECP256R1())
    if algorithm is SignAlgo.EDDSA:
        return ed25519.Ed25519PrivateKey.generate()
    if algorithm is SignAlgo.RSA:
        return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
    raise InvalidInputError(f"{algorithm.value} keys can only be supplied, not generated")


def classify_private_key(key: object) -> SignAlgo:
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return SignAlgo.EDDSA
    if isinstance(key, rsa.RSAPrivateKey):
        return SignAlgo.RSA
    if isinstance(key, ec.EllipticCurvePrivateKey):
        if isinstance(key.curve, ec.SECP256R1):
            return SignAlgo.ECDSA
        if isinstance(key.curve, ec.SECP384R1):
            return SignAlgo.ECDSA384
    raise InvalidInputError("Unknown signature algorithm.")


def parse_private_key(data: bytes) -> tuple[PrivateKey, SignAlgo]:
    """Parse an unencrypted PKCS#8 (or traditional) key in PEM or DER form."""
    loaders = (serialization.load_pem_private_key, serialization.load_der_private_key)
    if data.lstrip().startswith(b"-----BEGIN"):
        loaders = loaders[:1]
    last_error: Exception | None = None
    for loader in loaders:
        try:
            key = loader(data, password=None)
        except (ValueError, TypeError) as exc:
            last_error = exc
            continue
        return key, classify_private_key(key)  # type: ignore[return-value]
    raise InvalidInputError(f"cannot parse private key: {last_error}")


def load_key_input(path: str | Path) -> tuple[PrivateKey, SignAlgo]:
    key_path = Path(path)
    try:
        data = key_path.read_bytes()
    except OSError as exc:
        raise InvalidInputError(f"cannot read key file {key_path}: {exc}") from exc
    return parse_private_key(data)


def signing_hash(key: PrivateKey) -> hashes.HashAlgorithm | None:
    """Digest used when ``key`` signs a certificate; Ed25519 takes none."""
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return None
    if isinstance(key, ec.EllipticCurvePrivateKey) and isinstance(key.curve, ec.SECP384R1):
        return hashes.SHA384()
    return hashes.SHA256()


def public_key_bytes(key: PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def private_key_pem(key: PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
