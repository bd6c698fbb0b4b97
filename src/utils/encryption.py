"""
Encryption for integration secrets (Meta app secret and access token,
Google Ads webhook secret, OLX/Zap client API key).
Uses Fernet symmetric encryption with the configured ENCRYPTION_KEY.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Integration columns that hold credentials
SECRET_FIELDS = ("app_secret", "access_token", "webhook_secret", "client_api_key")


def _get_fernet():
    """Fernet cipher for the configured key, or None when encryption is disabled."""
    from cryptography.fernet import Fernet
    from src.config import get_settings

    key = get_settings().encryption_key
    if not key:
        return None
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    """
    Encrypt a secret before it is stored.
    Falls back to storing plaintext if encryption key is not configured.
    """
    if not plaintext:
        return plaintext

    fernet = _get_fernet()
    if fernet is None:
        return plaintext

    try:
        return fernet.encrypt(plaintext.encode()).decode()
    except Exception as e:
        logger.error("Encryption failed: %s", str(e))
        return plaintext


def decrypt_value(encrypted: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored secret.
    Returns the value as-is when it was never encrypted (legacy plaintext rows).
    """
    if not encrypted:
        return encrypted

    fernet = _get_fernet()
    if fernet is None:
        return encrypted

    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except Exception:
        return encrypted


def mask_secret(value: Optional[str]) -> Optional[str]:
    """Render a secret for API output: last four characters only."""
    if not value:
        return None
    plain = decrypt_value(value) or ""
    if len(plain) <= 4:
        return "****"
    return "****" + plain[-4:]
