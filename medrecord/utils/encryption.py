import base64
import hashlib
import json
import os
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.types import TypeDecorator, Text


def _build_cipher() -> Fernet:
    """Derive a stable Fernet key from ENCRYPTION_SECRET (or fallback dev secret)."""
    secret = os.getenv("ENCRYPTION_SECRET", "dev-secret-key-change-me").encode("utf-8")
    key = base64.urlsafe_b64encode(hashlib.sha256(secret).digest())
    return Fernet(key)


_CIPHER = _build_cipher()


def encrypt_str(plain: str) -> str:
    return _CIPHER.encrypt(plain.encode("utf-8")).decode("utf-8")


def decrypt_str(token: str) -> Optional[str]:
    try:
        return _CIPHER.decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        return None


class EncryptedText(TypeDecorator):
    """Patient-identifying free text, stored as a Fernet token."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        return encrypt_str(value if isinstance(value, str) else str(value))

    def process_result_value(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        return decrypt_str(value)


class EncryptedJSON(TypeDecorator):
    """Narrative clinical blocks (exam, diagnosis, treatment...).

    Values may be plain strings or nested objects; both round-trip through JSON.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        return encrypt_str(json.dumps(value, ensure_ascii=False, default=str))

    def process_result_value(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        raw = decrypt_str(value)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
