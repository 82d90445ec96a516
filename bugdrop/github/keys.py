"""GitHub App private key import.

GitHub hands out App keys as PKCS#1 PEM ("BEGIN RSA PRIVATE KEY"), while
most tooling converts them to PKCS#8 ("BEGIN PRIVATE KEY"). Both are
accepted. PKCS#1 bodies are re-wrapped into a PKCS#8 PrivateKeyInfo by
hand so that a single DER loader handles both:

    PrivateKeyInfo ::= SEQUENCE {
        version              INTEGER 0,
        privateKeyAlgorithm  SEQUENCE { OID rsaEncryption, NULL },
        privateKey           OCTET STRING (the PKCS#1 RSAPrivateKey)
    }

The result is a `SigningKey` that can only produce RS256-signed JWTs.
A new one is built for every signature; nothing keeps decrypted key
material around between requests.
"""

import base64
import binascii
import re

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from bugdrop.core.errors import KeyImportError, SigningError

PKCS1_LABEL = "RSA PRIVATE KEY"
PKCS8_LABEL = "PRIVATE KEY"

_PEM_RE = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----(.*?)-----END \1-----",
    re.DOTALL,
)

# DER tags
_INTEGER = 0x02
_OCTET_STRING = 0x04
_NULL = 0x05
_OBJECT_IDENTIFIER = 0x06
_SEQUENCE = 0x30

# 1.2.840.113549.1.1.1 (rsaEncryption), pre-encoded.
_RSA_ENCRYPTION_OID = bytes.fromhex("2a864886f70d010101")

_MAX_DER_LENGTH = 0xFFFFFF


def encode_der_length(length: int) -> bytes:
    """Encode a DER length field.

    Short form below 128; long form with one, two or three length octets
    above that, prefixed by 0x80 | octet_count.
    """
    if length < 0:
        raise ValueError(f"DER length cannot be negative: {length}")
    if length < 0x80:
        return bytes([length])
    if length < 0x100:
        return bytes([0x81, length])
    if length < 0x10000:
        return bytes([0x82]) + length.to_bytes(2, "big")
    if length <= _MAX_DER_LENGTH:
        return bytes([0x83]) + length.to_bytes(3, "big")
    raise ValueError(f"DER length too large: {length}")


def encode_der(tag: int, content: bytes) -> bytes:
    """Encode one tag/length/value triple."""
    return bytes([tag]) + encode_der_length(len(content)) + content


def wrap_pkcs1_in_pkcs8(pkcs1_der: bytes) -> bytes:
    version = encode_der(_INTEGER, b"\x00")
    algorithm = encode_der(
        _SEQUENCE,
        encode_der(_OBJECT_IDENTIFIER, _RSA_ENCRYPTION_OID) + encode_der(_NULL, b""),
    )
    private_key = encode_der(_OCTET_STRING, pkcs1_der)
    return encode_der(_SEQUENCE, version + algorithm + private_key)


def _split_pem(pem: str) -> tuple[str, bytes]:
    """Return (label, DER bytes) for the first PEM block in `pem`."""
    match = _PEM_RE.search(pem or "")
    if match is None:
        raise KeyImportError("Private key is not PEM encoded")

    label, body = match.group(1), match.group(2)
    body = "".join(body.split())
    if not body:
        raise KeyImportError("Private key PEM block is empty")

    try:
        der = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyImportError(f"Private key is not valid base64: {exc}") from exc
    return label, der


class SigningKey:
    """RS256-only handle around an RSA private key.

    There is deliberately no way to get the key material back out.
    """

    __slots__ = ("_key",)

    def __init__(self, key: rsa.RSAPrivateKey) -> None:
        self._key = key

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self._key.public_key()

    def encode_jwt(self, claims: dict) -> str:
        """Encode and sign `claims` as an RS256 JWT."""
        try:
            return jwt.encode(claims, self._key, algorithm="RS256")
        except (TypeError, ValueError, UnsupportedAlgorithm, jwt.PyJWTError) as exc:
            raise SigningError(f"Failed to sign assertion: {exc}") from exc

    def __repr__(self) -> str:
        return f"<SigningKey rsa-{self._key.key_size}>"


def import_private_key(pem: str) -> SigningKey:
    """Import a PKCS#1 or PKCS#8 PEM private key for RS256 signing.

    Raises KeyImportError on malformed PEM, invalid base64, a PEM label
    other than the two supported ones, or key material that is not RSA.
    """
    label, der = _split_pem(pem)

    if label == PKCS1_LABEL:
        try:
            der = wrap_pkcs1_in_pkcs8(der)
        except ValueError as exc:
            raise KeyImportError(str(exc)) from exc
    elif label != PKCS8_LABEL:
        raise KeyImportError(f"Unsupported private key type: {label}")

    try:
        key = serialization.load_der_private_key(der, password=None)
    except (TypeError, ValueError, UnsupportedAlgorithm) as exc:
        raise KeyImportError(f"Private key could not be loaded: {exc}") from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyImportError("Private key is not an RSA key")

    return SigningKey(key)
