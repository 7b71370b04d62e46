# cws/security/keystore.py
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from cws.errors import KeyStoreInitFailed, SignFailed
from cws.security.signing import load_private_key_der, load_public_key_der, rsa_sign, rsa_verify
from cws.utils.encoding import b64_encode

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
PRIVATE_KEY_FILE = "private.key"
PUBLIC_KEY_FILE = "public.key"


class KeyStore:
    """
    Owns the gateway's RSA key pair under `<data_dir>/keys/`.

    The private key is stored as PKCS#8 DER and the public key as
    SubjectPublicKeyInfo DER. The pair is generated once and never rotated
    while the process runs; after `initialize()` the store is read-only and
    safe to use from any task or thread.
    """

    def __init__(self, data_dir: Path):
        self.keys_dir = Path(data_dir) / "keys"
        self.private_key_path = self.keys_dir / PRIVATE_KEY_FILE
        self.public_key_path = self.keys_dir / PUBLIC_KEY_FILE
        self._private_key: Optional[rsa.RSAPrivateKey] = None
        self._public_key: Optional[rsa.RSAPublicKey] = None
        self._public_der: Optional[bytes] = None

    def initialize(self) -> None:
        try:
            self.keys_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self.keys_dir, 0o700)
        except OSError as e:
            logger.error(f"[KeyStore] Could not create keys directory '{self.keys_dir}': {e}")
            raise KeyStoreInitFailed(f"keys directory {self.keys_dir} is not usable") from e

        have_private = self.private_key_path.exists()
        have_public = self.public_key_path.exists()

        if have_private and have_public:
            logger.info("[KeyStore] Loading existing key pair...")
            self._load()
        else:
            if have_private or have_public:
                logger.warning("[KeyStore] Found only one half of the key pair. Generating a new pair.")
            else:
                logger.info("[KeyStore] No key pair found, generating a new one...")
            self._generate()

        logger.info(f"[KeyStore] Key pair ready (fingerprint {self.fingerprint()}).")

    def public_key_base64(self) -> str:
        if self._public_der is None:
            raise KeyStoreInitFailed("key store is not initialized")
        return b64_encode(self._public_der)

    def fingerprint(self) -> str:
        """SHA-256 of the public key's DER encoding, for pinning by clients."""
        if self._public_der is None:
            raise KeyStoreInitFailed("key store is not initialized")
        return hashlib.sha256(self._public_der).hexdigest()

    def sign(self, text: str) -> str:
        if self._private_key is None:
            raise SignFailed("key store is not initialized")
        try:
            return rsa_sign(self._private_key, text)
        except (TypeError, ValueError, AttributeError) as e:
            raise SignFailed(str(e)) from e

    def verify(self, text: str, signature_b64: str) -> bool:
        if self._public_key is None:
            logger.warning("[KeyStore] verify() called before initialize().")
            return False
        return rsa_verify(self._public_key, text, signature_b64)

    def close(self) -> None:
        self._private_key = None
        self._public_key = None
        self._public_der = None
        logger.info("[KeyStore] Key material released.")

    def _load(self) -> None:
        try:
            private_key = load_private_key_der(self.private_key_path.read_bytes())
            public_key = load_public_key_der(self.public_key_path.read_bytes())
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"[KeyStore] Could not load key pair from '{self.keys_dir}': {e}")
            raise KeyStoreInitFailed(f"stored key pair in {self.keys_dir} is not readable") from e

        if private_key.public_key().public_numbers() != public_key.public_numbers():
            logger.error("[KeyStore] Stored public key does not match the private key.")
            raise KeyStoreInitFailed("stored public key does not match the private key")

        self._set_keys(private_key)
        logger.info("[KeyStore] Key pair loaded.")

    def _generate(self) -> None:
        private_key = rsa.generate_private_key(
            public_exponent=65537,
            key_size=KEY_SIZE,
        )
        private_der = private_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        public_der = private_key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

        try:
            private_tmp = self._write_temp(private_der)
            public_tmp = self._write_temp(public_der)
            os.replace(private_tmp, self.private_key_path)
            os.replace(public_tmp, self.public_key_path)
        except OSError as e:
            logger.error(f"[KeyStore] Could not write key pair to '{self.keys_dir}': {e}")
            raise KeyStoreInitFailed(f"could not write key pair to {self.keys_dir}") from e

        self._set_keys(private_key)
        logger.info("[KeyStore] New RSA key pair generated and saved.")

    def _write_temp(self, data: bytes) -> str:
        """Writes `data` to an owner-only temp file in the keys directory and returns its path."""
        fd, path = tempfile.mkstemp(dir=self.keys_dir, prefix=".tmp-", suffix=".key")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError:
            os.unlink(path)
            raise
        return path

    def _set_keys(self, private_key: rsa.RSAPrivateKey) -> None:
        self._private_key = private_key
        self._public_key = private_key.public_key()
        self._public_der = self._public_key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
