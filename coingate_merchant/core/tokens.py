"""Correlation tokens linking a payment attempt to its CoinGate callback."""
import secrets
from typing import Optional

TOKEN_LENGTH = 32


def generate_token() -> str:
    """Return a 32-character hex token from the OS CSPRNG."""
    return secrets.token_hex(TOKEN_LENGTH // 2)


def tokens_match(expected: Optional[str], received: Optional[str]) -> bool:
    """Constant-time comparison; a missing token on either side never matches."""
    if not expected or not received:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
