"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key comes from ``config.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``).

Without a key, encryption is **disabled** and tokens are stored as
plaintext (with a startup warning).  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)


class TokenCipher:
    """Fernet wrapper that degrades to a pass-through when no key is set."""

    def __init__(self, key: Optional[str]):
        self._fernet: Optional[Fernet] = None
        if not key:
            logger.warning(
                "TOKEN_ENCRYPTION_KEY not set — Linear OAuth tokens will be stored as plaintext"
            )
            return
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        logger.info("Token encryption enabled (Fernet/AES-128-CBC)")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if not plaintext or self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Tokens written before encryption was switched on are not valid
        Fernet tokens; they are returned as-is.
        """
        if not ciphertext or self._fernet is None:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.debug("Stored token is not Fernet ciphertext; using it verbatim")
            return ciphertext


_cipher: Optional[TokenCipher] = None


def default_cipher() -> TokenCipher:
    """Lazy-initialise the process cipher from settings once."""
    global _cipher
    if _cipher is None:
        _cipher = TokenCipher(config.token_encryption_key)
    return _cipher
