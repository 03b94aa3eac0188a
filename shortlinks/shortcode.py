"""Random short code generation.

Codes come from nanoid over a URL-safe alphabet. Nothing here guarantees
uniqueness: the caller persists the code and relies on the database's unique
constraint to detect the rare collision.
"""

from nanoid import generate as _nanoid

__all__ = ["SHORT_CODE_ALPHABET", "DEFAULT_CODE_LENGTH", "generate"]

SHORT_CODE_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_-"
DEFAULT_CODE_LENGTH = 7


def generate(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Return a fresh random code.

    Example:
        >>> len(generate())
        7
    """
    if length < 1:
        raise ValueError("Code length must be positive")
    return _nanoid(SHORT_CODE_ALPHABET, length)
