"""One-way password hashing with bcrypt."""

import bcrypt

from user_onboard.models.auth import PASSWORD_MAX_BYTES


class PasswordHasher:
    """Salted, deliberately slow password hashing."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        # Compared against when an email is unknown so a miss costs as much as a hit
        self._dummy_hash = self.hash("dummy-password-for-timing")

    def hash(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string

        Raises:
            ValueError: If the password is longer than bcrypt accepts
        """
        encoded = password.encode("utf-8")
        if len(encoded) > PASSWORD_MAX_BYTES:
            raise ValueError(f"Password cannot be longer than {PASSWORD_MAX_BYTES} bytes")
        hashed = bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("utf-8")

    def matches(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise
        """
        encoded = password.encode("utf-8")
        if len(encoded) > PASSWORD_MAX_BYTES:
            return False
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))

    def burn(self, password: str) -> None:
        """Spend one comparison's worth of time without a real hash."""
        self.matches(password, self._dummy_hash)
