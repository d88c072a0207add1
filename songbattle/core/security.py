import secrets
from typing import Optional

from passlib.context import CryptContext


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

API_KEY_PREFIX_LENGTH = 12


def generate_api_key() -> str:
    """Return a new key of the form ``<prefix>.<secret>``.

    The prefix is stored in clear so a key can be found with one indexed
    lookup; only the full key's hash is kept.
    """
    prefix = secrets.token_hex(API_KEY_PREFIX_LENGTH // 2)
    return f"{prefix}.{secrets.token_urlsafe(32)}"


def api_key_prefix(api_key: str) -> Optional[str]:
    prefix, sep, secret = api_key.partition(".")
    if not sep or not secret or len(prefix) != API_KEY_PREFIX_LENGTH:
        return None
    return prefix


def hash_api_key(api_key: str) -> str:
    return pwd_context.hash(api_key)


def verify_api_key(plain_api_key: str, hashed_api_key: str) -> bool:
    return pwd_context.verify(plain_api_key, hashed_api_key)
