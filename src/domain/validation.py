"""
Input validation for sender and domain requests.
"""

import re

from .errors import BadRequestError

_EMAIL_PATTERN = re.compile(r'^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)+$')
_DOMAIN_LABEL_PATTERN = re.compile(r'^[A-Za-z0-9]([A-Za-z0-9\-]{0,61}[A-Za-z0-9])?$')

MAX_EMAIL_LENGTH = 254
MAX_NAME_LENGTH = 100


def validate_email(email) -> str:
    """
    Validate an email address.

    Returns:
        str: The email, stripped of surrounding whitespace

    Raises:
        BadRequestError: If the address is missing or malformed
    """
    if not email or not isinstance(email, str):
        raise BadRequestError("Email is required")

    email = email.strip()
    if len(email) > MAX_EMAIL_LENGTH or not _EMAIL_PATTERN.match(email):
        raise BadRequestError("Invalid email address format")

    validate_domain(extract_domain(email))
    return email


def validate_domain(domain) -> str:
    """
    Validate a bare domain name (no scheme, path, port or query).

    Raises:
        BadRequestError: If the domain is malformed
    """
    if not domain or not isinstance(domain, str):
        raise BadRequestError("Domain is required")

    if '://' in domain or any(c in domain for c in '/:?#@ '):
        raise BadRequestError("Domain must not include protocol, path, port or query")

    if len(domain) > 253:
        raise BadRequestError("Invalid domain format")

    for label in domain.split('.'):
        if not _DOMAIN_LABEL_PATTERN.match(label):
            raise BadRequestError("Invalid domain format")

    return domain


def extract_domain(email: str) -> str:
    """Return the lower-cased domain part of an email address."""
    return email.rsplit('@', 1)[-1].lower()


def validate_name(name) -> str:
    """
    Validate a sender display name.

    Raises:
        BadRequestError: If the name is empty, not a string, or too long
    """
    if not isinstance(name, str) or not name.strip():
        raise BadRequestError("Name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise BadRequestError(f"Name cannot exceed {MAX_NAME_LENGTH} characters")
    return name.strip()
