"""Encryption of custodial private keys at rest."""

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from custody.utils.exceptions import SecurityError


class EncryptionService:
    """
    Encryption service for custodial keys.

    Uses Fernet (symmetric encryption). Without a key the service runs in
    passthrough mode, which is refused in production.
    """

    def __init__(
        self,
        encryption_key: str | None = None,
        environment: str = "development",
    ) -> None:
        """
        Initialize encryption service.

        Args:
            encryption_key: Base64-encoded Fernet key
            environment: Deployment environment name
        """
        self.environment = environment
        self.fernet: Fernet | None = None
        self.enabled = False

        if encryption_key:
            try:
                self.fernet = Fernet(encryption_key.encode())
                self.enabled = True
            except (ValueError, TypeError) as e:
                logger.error(f"Invalid encryption key: {e}")
                if self.environment == "production":
                    raise SecurityError(
                        "Invalid encryption key in production environment."
                    ) from e
        elif self.environment == "production":
            raise SecurityError(
                "Encryption key not configured in production environment. "
                "Set ENCRYPTION_KEY in .env file."
            )

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext.

        Args:
            plaintext: Text to encrypt

        Returns:
            Fernet token, or plaintext when encryption is disabled (dev only)
        """
        if not self.enabled or not self.fernet:
            if self.environment == "production":
                raise SecurityError(
                    "Encryption must be enabled in production. "
                    "Cannot save custodial keys without encryption."
                )
            logger.warning("Encryption disabled - storing plaintext (DEV ONLY)")
            return plaintext

        return self.fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt ciphertext.

        Args:
            ciphertext: Fernet token

        Returns:
            Decrypted text

        Raises:
            SecurityError: If the token cannot be decrypted
        """
        if not self.enabled or not self.fernet:
            if self.environment == "production":
                raise SecurityError(
                    "Encryption must be enabled in production. "
                    "Cannot decrypt custodial keys without encryption service."
                )
            return ciphertext

        try:
            return self.fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            logger.error("Decryption failed: invalid token or wrong ENCRYPTION_KEY")
            raise SecurityError("Decryption failed") from e

    @staticmethod
    def generate_key() -> str:
        """
        Generate new Fernet key.

        Returns:
            Base64-encoded key
        """
        return Fernet.generate_key().decode()


# Singleton instance
_encryption_service: EncryptionService | None = None


def get_encryption_service() -> EncryptionService:
    """Get encryption service singleton, initializing it from settings if needed."""
    global _encryption_service
    if _encryption_service is None:
        from custody.config.settings import settings

        _encryption_service = EncryptionService(
            settings.encryption_key, environment=settings.environment
        )
    return _encryption_service


def init_encryption_service(
    encryption_key: str | None = None,
    environment: str = "development",
) -> EncryptionService:
    """Initialize encryption service singleton."""
    global _encryption_service

    _encryption_service = EncryptionService(encryption_key, environment=environment)

    return _encryption_service
