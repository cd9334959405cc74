"""
Encryption at rest for NDIS participant numbers.

FIELD_ENCRYPTION_KEY holds one or more comma-separated Fernet keys. New
values are encrypted with the first key; any listed key can decrypt, so
keys can be rotated by prepending a new one. Without configured keys a
key is derived from SECRET_KEY, which suits development only.
"""
import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from django.conf import settings
from django.db import models

logger = logging.getLogger(__name__)


def _derived_key():
    digest = hashlib.sha256(f"ndis-field:{settings.SECRET_KEY}".encode()).digest()
    return base64.urlsafe_b64encode(digest)


def field_cipher():
    raw = getattr(settings, "FIELD_ENCRYPTION_KEY", "") or ""
    keys = [k.strip() for k in raw.split(",") if k.strip()]
    if not keys:
        return MultiFernet([Fernet(_derived_key())])
    return MultiFernet([Fernet(k.encode()) for k in keys])


def encrypt_value(plaintext):
    if not plaintext:
        return ""
    return field_cipher().encrypt(str(plaintext).encode()).decode()


def decrypt_value(token):
    """
    Decrypt a stored token. Values written before encryption was switched
    on are plaintext and come back unchanged.
    """
    if not token:
        return ""
    try:
        return field_cipher().decrypt(token.encode()).decode()
    except InvalidToken:
        logger.debug("Stored value is not a Fernet token; treating it as plaintext")
        return token


def reencrypt_value(token):
    """Re-encrypt a stored token under the current primary key."""
    if not token:
        return ""
    try:
        return field_cipher().rotate(token.encode()).decode()
    except InvalidToken:
        return encrypt_value(token)


class EncryptedCharField(models.CharField):
    """CharField stored as a Fernet token. It cannot be filtered on."""

    def from_db_value(self, value, expression, connection):
        if value is None:
            return value
        return decrypt_value(value)

    def get_prep_value(self, value):
        value = super().get_prep_value(value)
        if not value:
            return value
        return encrypt_value(value)

    def deconstruct(self):
        name, _, args, kwargs = super().deconstruct()
        return name, "config.encryption.EncryptedCharField", args, kwargs
