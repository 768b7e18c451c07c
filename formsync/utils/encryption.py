"""
At-rest protection for Airtable webhook MAC secrets.

Airtable hands out the MAC secret once, base64-encoded, in the create-webhook response.
It is sealed with Fernet (ENCRYPTION_KEY) before it is written to the registration row
and only opened again when a ping has to be verified.
"""
import base64
import binascii
import logging
from typing import Optional

logger = logging.getLogger(__name__)


# Fernet tokens are urlsafe base64 of a 0x80 version byte followed by the timestamp
FERNET_TOKEN_PREFIX = "gAAAAA"


class MacSecretUnreadable(ValueError):
    """A MAC secret is stored but cannot be turned back into key bytes."""


def _get_fernet():
    """Fernet cipher for the configured key, or None when no key is set."""
    from cryptography.fernet import Fernet
    from formsync.config import get_settings
    settings = get_settings()

    key = settings.encryption_key
    if not key:
        logger.warning("ENCRYPTION_KEY not configured - MAC secrets stored as-is")
        return None

    return Fernet(key.encode() if isinstance(key, str) else key)


def seal_mac_secret(secret_base64: Optional[str]) -> Optional[str]:
    """
    Encrypt a base64 MAC secret for storage.
    Without an encryption key the value is stored unchanged.
    """
    if not secret_base64:
        return None

    fernet = _get_fernet()
    if fernet is None:
        return secret_base64

    return fernet.encrypt(secret_base64.encode()).decode()


def open_mac_secret(stored: Optional[str]) -> Optional[bytes]:
    """
    Recover the raw HMAC key bytes from a stored secret.

    Returns None only when nothing is stored. Values that are not Fernet tokens are read
    as plaintext base64, which covers rows written before ENCRYPTION_KEY was configured.
    Raises MacSecretUnreadable when a secret is stored but unusable: a token sealed under
    another key, a token with no key configured, or a value that is not base64.
    """
    if not stored:
        return None

    secret_base64 = stored
    fernet = _get_fernet()
    if fernet is not None:
        from cryptography.fernet import InvalidToken
        try:
            secret_base64 = fernet.decrypt(stored.encode()).decode()
        except InvalidToken:
            if stored.startswith(FERNET_TOKEN_PREFIX):
                raise MacSecretUnreadable("MAC secret was sealed with a different ENCRYPTION_KEY")
            logger.debug("Stored MAC secret is not a Fernet token, using it as plaintext")
    elif stored.startswith(FERNET_TOKEN_PREFIX):
        raise MacSecretUnreadable("MAC secret is sealed but ENCRYPTION_KEY is not set")

    try:
        secret = base64.b64decode(secret_base64, validate=True)
    except (binascii.Error, ValueError):
        raise MacSecretUnreadable("Stored MAC secret is not valid base64")
    if not secret:
        raise MacSecretUnreadable("Stored MAC secret decodes to an empty key")
    return secret
