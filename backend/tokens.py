# Access token generation
from __future__ import annotations
import secrets
import string
from typing import Callable

from errors import TokenGenerationExhausted

TOKEN_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
TOKEN_LENGTH = 12
MAX_TOKEN_ATTEMPTS = 10


def generate_token() -> str:
    """Return a random 12-character alphanumeric token.

    Characters are drawn independently and uniformly from the 62-symbol
    alphabet using the OS CSPRNG. Uniqueness is the caller's job.
    """
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def first_unique(
    generate: Callable[[], str],
    exists: Callable[[str], bool],
    max_attempts: int = MAX_TOKEN_ATTEMPTS,
) -> str:
    """Draw candidates until one is not already taken.

    Args:
        generate: Produces a fresh candidate on every call.
        exists: Returns True when the candidate is already in use.
        max_attempts: Total number of candidates tried before giving up.

    Returns:
        str: The first candidate for which ``exists`` returned False.

    Raises:
        TokenGenerationExhausted: If every candidate was taken.
    """
    for _ in range(max_attempts):
        candidate = generate()
        if not exists(candidate):
            return candidate
    raise TokenGenerationExhausted()
