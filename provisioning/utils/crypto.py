"""Random codes, token hashing and password hashing."""

import hashlib
import secrets

import bcrypt

# Lowercase alphanumerics without the look-alikes 0/o and 1/i/l
CONFIRMATION_CODE_CHARS = "23456789abcdefghjkmnpqrstuvwxyz"
TOKEN_CHARS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"

CONFIRMATION_CODE_LENGTH = 16
TOKEN_LENGTH = 16

# Pending passwords are hashed once at signup and stored; the cost matches
# what account creation uses so the hash can be adopted without re-hashing.
BCRYPT_ROUNDS = 8


def secure_random_string(length: int, chars: str = TOKEN_CHARS) -> str:
    """Cryptographically random string of `length` characters drawn from `chars`."""
    return "".join(secrets.choice(chars) for _ in range(length))


def generate_confirmation_code() -> str:
    return secure_random_string(CONFIRMATION_CODE_LENGTH, CONFIRMATION_CODE_CHARS)


def generate_token() -> str:
    return secure_random_string(TOKEN_LENGTH, TOKEN_CHARS)


def hash_token(token: str) -> str:
    """SHA-256 hex digest. Tokens are stored only in this form."""
    return hashlib.sha256(token.encode()).hexdigest()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")
