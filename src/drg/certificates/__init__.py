from drg.certificates.issuer import (
    PRIVATE_KEY_HINT,
    issue_device_certificate,
    issue_trust_anchor,
    write_pem,
)
from drg.certificates.schemas import (
    CERT_VALIDITY_DAYS,
    ORGANIZATION,
    IssuedCertificate,
    SignAlgo,
    TrustAnchorEntry,
    device_subject_alias,
)

__all__ = [
    "CERT_VALIDITY_DAYS",
    "ORGANIZATION",
    "PRIVATE_KEY_HINT",
    "IssuedCertificate",
    "SignAlgo",
    "TrustAnchorEntry",
    "device_subject_alias",
    "issue_device_certificate",
    "issue_trust_anchor",
    "write_pem",
]
