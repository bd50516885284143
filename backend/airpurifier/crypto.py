"""
Device credential sealing.

Device passwords are kept as Fernet tokens keyed off SECRET_KEY. Rows written
before sealing was introduced hold plaintext and are returned unchanged.
"""
import base64
import hashlib
from functools import lru_cache
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken
from airpurifier.config import settings


@lru_cache(maxsize=4)
def _cipher(secret: str) -> Fernet:
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest()))


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    if not plaintext:
        return plaintext
    return _cipher(settings.SECRET_KEY).encrypt(plaintext.encode()).decode()


def decrypt_value(token: Optional[str]) -> Optional[str]:
    if not token:
        return token
    try:
        return _cipher(settings.SECRET_KEY).decrypt(token.encode()).decode()
    except InvalidToken:
        return token
