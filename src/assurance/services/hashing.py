import hashlib

from assurance.config import settings


def sha256(text: str) -> str:
    """64-char lowercase hex digest of the UTF-8 encoding of text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_with_salt(salt: str, value: str) -> str:
    return sha256(salt + ":" + value)


def pseudonymize(value: str | None) -> str | None:
    """Salted one-way digest for IPs / user agents: correlatable, never reversible."""
    if not value:
        return None
    return hash_with_salt(settings.pseudonym_salt, value)
