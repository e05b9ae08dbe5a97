"""
Authentication utilities.

This module handles:
- Generating CSRF state tokens for the login redirect
- Checking an email against the allow-listed domain
"""

import secrets
from typing import Optional


# 32 bytes = 256 bits of entropy
STATE_NUM_BYTES = 32


def generate_state() -> str:
    """
    Generate a one-time CSRF state token.

    Draws from the operating system CSPRNG and encodes the bytes as URL-safe
    base64 so the token can travel in a query string unescaped. A failure
    of the randomness source propagates to the caller.

    Returns:
        URL-safe random string (43 characters)
    """
    return secrets.token_urlsafe(STATE_NUM_BYTES)


def states_match(received: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare a callback state with the stored one in constant time.

    Returns:
        True only if both are present and identical
    """
    if not received or not expected:
        return False
    return secrets.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


def email_domain(email: str) -> Optional[str]:
    """
    Return the domain part of an email, or None if there is none.

    Example:
        >>> email_domain("a@mesika.org")
        'mesika.org'
    """
    if not email or email.count("@") != 1:
        return None

    domain = email.split("@", 1)[1].strip().lower()
    return domain or None


def is_email_domain_allowed(email: str, allowed_domain: str) -> bool:
    """
    Check if an email belongs to the allow-listed domain.

    The email must hold exactly one '@' and the match is exact on everything
    after it: subdomains and look-alike suffixes are rejected.

    Example:
        >>> is_email_domain_allowed("user@mesika.org", "mesika.org")
        True
        >>> is_email_domain_allowed("user@evil-mesika.org", "mesika.org")
        False
    """
    domain = email_domain(email)
    if domain is None:
        return False
    return domain == allowed_domain.strip().lower()


def display_name_for(name: Optional[str], email: str) -> str:
    """
    Pick a display name, falling back to the email's local part.
    """
    if name and name.strip():
        return name.strip()

    local = email.split("@", 1)[0]
    return local.title() if local else "User"
