# services/token_service.py
"""
Attendance token generation.
Tokens are drawn from the OS CSPRNG and mapped onto a 62-symbol alphabet.
"""

import logging
import secrets

ALPHABET = '0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ'
DEFAULT_TOKEN_LENGTH = 16

logger = logging.getLogger('token_service')


class TokenGenerationError(RuntimeError):
    """The secure random source could not be used."""


def generate_token(length=DEFAULT_TOKEN_LENGTH):
    """
    Generate a fixed-length, URL-safe attendance token.

    Each random byte is reduced modulo the alphabet size. Uniqueness is not
    checked here; the store rejects duplicate tokens on create.

    Args:
        length: Number of characters (and random bytes) in the token

    Returns:
        str: Token made only of [0-9a-zA-Z]

    Raises:
        ValueError: If length is not a positive integer
        TokenGenerationError: If the secure random source is unavailable
    """
    if not isinstance(length, int) or length < 1:
        raise ValueError(f"Token length must be a positive integer, got {length!r}")

    try:
        raw = secrets.token_bytes(length)
    except (NotImplementedError, OSError) as e:
        logger.critical(f"Secure random source unavailable: {str(e)}")
        raise TokenGenerationError("Secure random source unavailable") from e

    return ''.join(ALPHABET[b % len(ALPHABET)] for b in raw)
