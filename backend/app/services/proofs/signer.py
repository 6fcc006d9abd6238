"""
Ledger signing backends.

- hmac:     HMAC-SHA256 with LEDGER_HMAC_KEY (symmetric)
- ed25519:  Ed25519 private key from SIGNING_PRIVATE_KEY_PEM (asymmetric)
- unsigned: development only. Must be selected explicitly, logs a WARNING on
            every signature and is refused when APP_ENV=production.

A backend that is selected but not configured fails closed with
SigningUnavailable; there is no silent downgrade to unsigned.
"""
import base64
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ...config import EngineSettings
from ...errors import SigningUnavailable

logger = logging.getLogger(__name__)


class Signer(ABC):
    algorithm: str = ""

    def __init__(self, key_id: str):
        self.key_id = key_id

    @abstractmethod
    def sign(self, data: bytes) -> str:
        """Signature over `data`, as text."""

    @abstractmethod
    def verify(self, data: bytes, signature: str) -> bool:
        ...


class HmacSigner(Signer):
    algorithm = "hmac-sha256"

    def __init__(self, secret: str, key_id: str):
        if not secret:
            raise SigningUnavailable("LEDGER_HMAC_KEY is not set", hint="configure a ledger key")
        super().__init__(key_id)
        self._secret = secret.encode("utf-8")

    def sign(self, data: bytes) -> str:
        return hmac.new(self._secret, data, hashlib.sha256).hexdigest()

    def verify(self, data: bytes, signature: str) -> bool:
        return hmac.compare_digest(self.sign(data), (signature or "").strip())


class Ed25519Signer(Signer):
    algorithm = "ed25519"

    def __init__(self, private_key_pem: str, key_id: str):
        if not private_key_pem:
            raise SigningUnavailable(
                "SIGNING_PRIVATE_KEY_PEM is not set", hint="configure an Ed25519 key"
            )
        try:
            key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
        except (ValueError, TypeError) as e:
            raise SigningUnavailable(f"Unreadable signing key: {e}") from e
        if not isinstance(key, Ed25519PrivateKey):
            raise SigningUnavailable("Signing key is not an Ed25519 private key")
        super().__init__(key_id)
        self._key = key

    @classmethod
    def generate(cls, key_id: str = "ephemeral") -> "Ed25519Signer":
        """Fresh in-memory key; used by tests and local tooling."""
        pem = Ed25519PrivateKey.generate().private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return cls(pem.decode("utf-8"), key_id)

    def sign(self, data: bytes) -> str:
        return base64.b64encode(self._key.sign(data)).decode("ascii")

    def verify(self, data: bytes, signature: str) -> bool:
        try:
            raw = base64.b64decode(signature or "", validate=True)
            self._key.public_key().verify(raw, data)
            return True
        except (InvalidSignature, ValueError):
            return False


class UnsignedSigner(Signer):
    algorithm = "unsigned"

    def sign(self, data: bytes) -> str:
        logger.warning("Proof ledger running UNSIGNED; signatures carry no integrity guarantee")
        return "unsigned"

    def verify(self, data: bytes, signature: str) -> bool:
        return False


def get_signer(settings: EngineSettings) -> Signer:
    """Build the configured backend. Raises SigningUnavailable when unusable."""
    backend = (settings.signing_backend or "hmac").lower()

    if backend == "hmac":
        return HmacSigner(settings.ledger_hmac_key, settings.signing_key_id)
    if backend == "ed25519":
        return Ed25519Signer(settings.signing_private_key_pem, settings.signing_key_id)
    if backend == "unsigned":
        if settings.is_production:
            logger.error("SIGNING_BACKEND=unsigned refused in production")
            raise SigningUnavailable(
                "Unsigned ledger mode is not allowed in production",
                hint="set SIGNING_BACKEND=hmac or ed25519",
            )
        return UnsignedSigner("unsigned")

    raise SigningUnavailable(f"Unknown signing backend: {backend}")
