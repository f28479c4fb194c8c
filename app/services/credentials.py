"""
Credential encryption/decryption and store credential access.
"""
import json
import base64
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.models import Store

logger = logging.getLogger(__name__)


def get_encryption_key() -> bytes:
    """Get or generate encryption key"""
    key_str = settings.ENCRYPTION_KEY
    # Ensure key is 32 bytes for Fernet
    key_bytes = key_str.encode()[:32].ljust(32, b'0')
    return base64.urlsafe_b64encode(key_bytes)


def encrypt_token(token: str) -> str:
    """Encrypt a token"""
    key = get_encryption_key()
    f = Fernet(key)
    encrypted = f.encrypt(token.encode())
    return encrypted.decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt a token"""
    key = get_encryption_key()
    f = Fernet(key)
    decrypted = f.decrypt(encrypted.encode())
    return decrypted.decode()


def encrypt_credentials(data: dict[str, Any]) -> str:
    """Encrypt a credentials dict as JSON."""
    return encrypt_token(json.dumps(data))


def get_store_credentials(store: Store) -> dict[str, Any]:
    """
    Return decrypted store credentials.
    Shopify: {accessToken, apiSecret}; WooCommerce: {consumerKey, consumerSecret, webhookSecret}.
    Returns {} when nothing is stored or the value cannot be decrypted.
    """
    if not store or not store.api_credentials:
        return {}
    try:
        dec = decrypt_token(store.api_credentials)
    except InvalidToken:
        logger.warning("Store %s credentials could not be decrypted", store.id)
        return {}
    if isinstance(dec, str) and dec.strip().startswith("{"):
        try:
            data = json.loads(dec)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}
    # Raw token string (legacy shape: Shopify access token only)
    return {"accessToken": dec}
