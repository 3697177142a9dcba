"""Certificate and key schemas."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

CERT_VALIDITY_DAYS = 365
ORGANIZATION = "Drogue IoT"
TRUST_ANCHOR_UNIT = "Cloud"


class SignAlgo(str, Enum):
    """Key algorithms accepted for generated or supplied keys.

    ``ECDSA384`` is only ever detected on externally supplied keys; drg
    does not generate P-384 keys itself.
    """

    ECDSA = "ECDSA"
    EDDSA = "EdDSA"
    RSA = "RSA"
    ECDSA384 = "ECDSA384"

    @classmethod
    def generatable(cls) -> list["SignAlgo"]:
        return [cls.ECDSA, cls.EDDSA, cls.RSA]


@dataclass(frozen=True)
class IssuedCertificate:
    certificate_pem: bytes
    private_key_pem: Optional[bytes] = None


class TrustAnchorEntry(BaseModel):
    """One entry of ``spec.trustAnchors.anchors`` on an application."""

    model_config = ConfigDict(extra="allow")

    certificate: str

    @classmethod
    def from_pem(cls, certificate_pem: bytes) -> "TrustAnchorEntry":
        return cls(certificate=base64.b64encode(certificate_pem).decode("ascii"))

    def certificate_pem(self) -> bytes:
        return base64.b64decode(self.certificate)


def device_subject_alias(app_id: str, device_id: str) -> str:
    return f"CN={device_id}, O={ORGANIZATION}, OU={app_id}"
