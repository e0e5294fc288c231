"""Public link tokens: random, fixed length, URL safe. Never derived from time or owner."""

import secrets
from typing import Optional

from sharegate.config import get_settings


def mint_token(nbytes: Optional[int] = None) -> str:
    """Return a hex token of nbytes random bytes (default from settings, 16 -> 32 chars)."""
    if nbytes is None:
        nbytes = get_settings().token_bytes
    return secrets.token_hex(nbytes)
