# cws/security/signing.py
"""RSA PKCS#1 v1.5 SHA-256 sign/verify over UTF-8 text, base64 on the wire."""
import binascii

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from cws.utils.encoding import b64_decode, b64_encode


def load_private_key_der(data: bytes) -> rsa.RSAPrivateKey:
    """Parse an unencrypted PKCS#8 DER private key; raises ValueError if it is not RSA."""
    key = serialization.load_der_private_key(data, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("private key is not an RSA key")
    return key


def load_public_key_der(data: bytes) -> rsa.RSAPublicKey:
    """Parse a SubjectPublicKeyInfo DER public key; raises ValueError if it is not RSA."""
    key = serialization.load_der_public_key(data)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("public key is not an RSA key")
    return key


def rsa_sign(private_key: rsa.RSAPrivateKey, text: str) -> str:
    """
    Sign the UTF-8 bytes of `text` using RSA PKCS#1 v1.5 + SHA-256.

    :return: base64 of the raw signature
    """
    signature = private_key.sign(
        text.encode("utf-8"),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    return b64_encode(signature)


def rsa_verify(public_key: rsa.RSAPublicKey, text: str, signature_b64: str) -> bool:
    """
    Verify a base64 RSA PKCS#1 v1.5 + SHA-256 signature over UTF-8 text.

    :return: True if valid, False for any malformed input or bad signature
    """
    try:
        public_key.verify(
            b64_decode(signature_b64),
            text.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return True
    except (InvalidSignature, UnsupportedAlgorithm, binascii.Error, ValueError,
            TypeError, AttributeError, UnicodeError):
        return False
