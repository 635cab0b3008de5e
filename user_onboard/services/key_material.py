"""RSA key pair used to sign and verify JWTs."""

from dataclasses import dataclass
from pathlib import Path

import structlog
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from user_onboard.errors import configuration_error

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KeyMaterial:
    """An immutable RSA key pair.

    Only the private key can sign; only the public key is needed to verify.
    Instances are read-only after construction and safe to share between
    concurrent requests.
    """

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey

    def __post_init__(self):
        if self.private_key.public_key().public_numbers() != self.public_key.public_numbers():
            raise configuration_error("JWT public key does not match the private key")

    @classmethod
    def load(cls, private_key_path: str, public_key_path: str) -> "KeyMaterial":
        """Load a key pair from PEM files.

        Args:
            private_key_path: PKCS#8 PEM private key
            public_key_path: X.509 SubjectPublicKeyInfo PEM public key

        Returns:
            Loaded KeyMaterial

        Raises:
            OnboardError: CONFIGURATION if a file is missing, unreadable,
                not an RSA key, or the two keys do not form a pair
        """
        private_pem = _read_key_file(private_key_path, "private")
        public_pem = _read_key_file(public_key_path, "public")

        try:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
            public_key = serialization.load_pem_public_key(public_pem)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.error(
                "jwt_keys_malformed",
                private_key_path=private_key_path,
                public_key_path=public_key_path,
                error=str(e),
            )
            raise configuration_error(f"Failed to parse JWT keys: {e}") from e

        if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(
            public_key, rsa.RSAPublicKey
        ):
            raise configuration_error("JWT keys must be RSA keys")

        keys = cls(private_key=private_key, public_key=public_key)
        logger.info(
            "jwt_keys_loaded",
            private_key_path=private_key_path,
            public_key_path=public_key_path,
            key_size=private_key.key_size,
        )
        return keys

    @classmethod
    def from_settings(cls, settings) -> "KeyMaterial":
        """Load the key pair from the configured paths."""
        return cls.load(settings.jwt_private_key_path, settings.jwt_public_key_path)

    @classmethod
    def generate(cls, key_size: int = 2048) -> "KeyMaterial":
        """Generate a fresh key pair (development and tests)."""
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        return cls(private_key=private_key, public_key=private_key.public_key())

    def private_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def public_pem(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def write(self, private_key_path: str, public_key_path: str) -> None:
        """Write both keys as PEM files; the private key is made owner-only."""
        private_path = Path(private_key_path)
        public_path = Path(public_key_path)
        private_path.parent.mkdir(parents=True, exist_ok=True)
        public_path.parent.mkdir(parents=True, exist_ok=True)
        private_path.write_bytes(self.private_pem())
        private_path.chmod(0o600)
        public_path.write_bytes(self.public_pem())


def _read_key_file(path: str, label: str) -> bytes:
    key_path = Path(path)
    try:
        return key_path.read_bytes()
    except OSError as e:
        logger.error("jwt_key_unreadable", key=label, path=path, error=str(e))
        raise configuration_error(f"Cannot read JWT {label} key at {path}: {e}", path=path) from e
