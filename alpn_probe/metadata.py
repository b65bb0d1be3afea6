"""TLS session metadata: version labels, cipher suite ids and peer certificate details."""
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID
from OpenSSL import crypto

TLS_VERSION_LABELS = {
    "TLSv1": "1.0",
    "TLSv1.1": "1.1",
    "TLSv1.2": "1.2",
    "TLSv1.3": "1.3",
}


def tls_version_label(version: Optional[str]) -> str:
    """Map an OpenSSL protocol name such as ``TLSv1.3`` to ``1.3``."""
    return TLS_VERSION_LABELS.get(version, "Unknown")


def format_cipher_suite(cipher_id: Optional[int]) -> str:
    if cipher_id is None:
        return "Unknown"
    return f"0x{cipher_id:04X}"


def cipher_suite_ids(context: ssl.SSLContext) -> Dict[str, int]:
    """Map OpenSSL cipher names enabled on ``context`` to their IANA identifiers.

    OpenSSL reports ids as ``0x0300XXXX``; the low 16 bits are the value
    carried on the wire.
    """
    return {cipher["name"]: cipher["id"] & 0xFFFF for cipher in context.get_ciphers()}


@dataclass(frozen=True)
class SessionMetadata:
    """Snapshot of the negotiated session, taken once when the connection is ready."""

    negotiated_protocol: Optional[str]
    tls_version: Optional[str]
    cipher_suite: Optional[int]
    peer_certificate: Optional[bytes] = None

    @classmethod
    def from_ssl_object(cls, ssl_object, context: ssl.SSLContext) -> "SessionMetadata":
        cipher = ssl_object.cipher()
        cipher_id = None
        if cipher:
            cipher_id = cipher_suite_ids(context).get(cipher[0])
        return cls(
            negotiated_protocol=ssl_object.selected_alpn_protocol(),
            tls_version=ssl_object.version(),
            cipher_suite=cipher_id,
            peer_certificate=ssl_object.getpeercert(binary_form=True),
        )


def _common_name(name: x509.Name) -> Optional[str]:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attributes[0].value if attributes else None


def describe_certificate(der_bytes: bytes) -> dict:
    """Summarise a DER encoded leaf certificate for logging."""
    cert = crypto.load_certificate(crypto.FILETYPE_ASN1, der_bytes)
    parsed = cert.to_cryptography()
    not_after = parsed.not_valid_after_utc

    try:
        san = parsed.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names = san.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        names = []

    return {
        "subject_common_name": _common_name(parsed.subject),
        "issuer_common_name": _common_name(parsed.issuer),
        "not_after": not_after.strftime("%Y-%m-%d %H:%M:%S UTC"),
        "days_remaining": (not_after - datetime.now(timezone.utc)).days,
        "san": names,
        "fingerprint_sha256": parsed.fingerprint(hashes.SHA256()).hex(":").upper(),
    }
