"""Encryption of recipient email addresses at rest.

Uses Fernet symmetric encryption. The key must be a 32-byte URL-safe
base64-encoded string, supplied through ``EMAIL_ENCRYPTION_KEY``.

Generate a new key:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

import logging
import os

from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class EmailCipher:
    """Encrypts and decrypts stored recipient addresses.

    Without a configured key, values pass through unchanged so a
    development database keeps working.
    """

    def __init__(self, key: str | None) -> None:
        self._cipher: Fernet | None = None
        if key:
            try:
                self._cipher = Fernet(key.encode())
            except (ValueError, TypeError):
                logger.warning("EMAIL_ENCRYPTION_KEY has invalid format; emails are stored in plaintext")
        else:
            logger.warning("EMAIL_ENCRYPTION_KEY is not configured; emails are stored in plaintext")

    @property
    def is_enabled(self) -> bool:
        return self._cipher is not None

    def encrypt(self, plaintext: str) -> str:
        if not self._cipher or not plaintext:
            return plaintext
        return self._cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored address.

        Rows written before encryption was enabled hold plaintext; those are
        returned as-is.
        """
        if not self._cipher or not ciphertext:
            return ciphertext
        try:
            return self._cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            return ciphertext


email_cipher = EmailCipher(os.getenv("EMAIL_ENCRYPTION_KEY", ""))
