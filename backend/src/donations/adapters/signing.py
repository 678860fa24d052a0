"""Request authentication for the CyberSource REST API.

Two merchant-wide schemes are supported: an HMAC "HTTP Signature" over a
fixed set of headers using the shared secret, and an RS256 JWT signed with
the private key of the merchant's PKCS#12 certificate.
"""
import base64
import hashlib
import hmac
from email.utils import formatdate
from pathlib import Path
from typing import Optional

import jwt
from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

BODY_METHODS = {"POST", "PUT", "PATCH"}


def body_digest(body: bytes) -> str:
    """Base64 SHA-256 digest of a request body."""
    return base64.b64encode(hashlib.sha256(body).digest()).decode()


def http_signature_headers(
    merchant_id: str,
    key_id: str,
    secret_key: str,
    host: str,
    method: str,
    resource: str,
    body: bytes = b"",
    date: Optional[str] = None,
) -> dict[str, str]:
    """
    Build the headers of an HTTP Signature authenticated request.

    Args:
        merchant_id: Merchant ID
        key_id: Shared secret key ID
        secret_key: Base64 encoded shared secret
        host: Request host
        method: HTTP method
        resource: Path and query of the request
        body: Serialised request body
        date: RFC 1123 date, defaults to now

    Returns:
        Headers to send with the request
    """
    date = date or formatdate(usegmt=True)
    method = method.upper()

    headers = {
        "v-c-merchant-id": merchant_id,
        "date": date,
        "host": host,
    }
    signed = [
        ("host", host),
        ("date", date),
        ("request-target", f"{method.lower()} {resource}"),
    ]

    if method in BODY_METHODS:
        digest = f"SHA-256={body_digest(body)}"
        headers["digest"] = digest
        signed.append(("digest", digest))

    signed.append(("v-c-merchant-id", merchant_id))

    signature_string = "\n".join(f"{name}: {value}" for name, value in signed)
    signature = base64.b64encode(
        hmac.new(base64.b64decode(secret_key), signature_string.encode("utf-8"), hashlib.sha256).digest()
    ).decode()

    header_names = " ".join(name for name, _ in signed)
    headers["signature"] = (
        f'keyid="{key_id}", algorithm="HmacSHA256", headers="{header_names}", signature="{signature}"'
    )
    return headers


class JwtSigner:
    """Signs requests with the merchant certificate's private key."""

    algorithm = "RS256"

    def __init__(self, merchant_id: str, private_key, key_serial: str):
        self.merchant_id = merchant_id
        self.private_key = private_key
        self.key_serial = key_serial

    @classmethod
    def from_certificate(cls, merchant_id: str, path: Path, password: Optional[str] = None) -> "JwtSigner":
        """
        Load a signer from a PKCS#12 file.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the file is not a usable PKCS#12 bundle
        """
        data = path.read_bytes()
        secret = (password if password is not None else merchant_id).encode()
        private_key, certificate, _ = pkcs12.load_key_and_certificates(data, secret)

        if private_key is None or certificate is None:
            raise ValueError(f"{path.name} does not contain a key and certificate")

        return cls(merchant_id, private_key, _certificate_serial(certificate))

    def headers(self, method: str, body: bytes = b"", date: Optional[str] = None) -> dict[str, str]:
        """Build the headers of a JWT authenticated request."""
        date = date or formatdate(usegmt=True)
        claims: dict[str, str] = {"iat": date}

        if method.upper() in BODY_METHODS:
            claims["digest"] = body_digest(body)
            claims["digestAlgorithm"] = "SHA-256"

        token = jwt.encode(
            claims,
            self.private_key,
            algorithm=self.algorithm,
            headers={"v-c-merchant-id": self.merchant_id, "kid": self.key_serial},
        )

        return {
            "v-c-merchant-id": self.merchant_id,
            "date": date,
            "authorization": f"Bearer {token}",
        }


def _certificate_serial(certificate: x509.Certificate) -> str:
    """Key ID the gateway expects: the subject serialNumber, else the certificate serial."""
    attributes = certificate.subject.get_attributes_for_oid(NameOID.SERIAL_NUMBER)
    if attributes:
        return str(attributes[0].value)
    return str(certificate.serial_number)
