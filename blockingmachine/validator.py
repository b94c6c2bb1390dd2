#!/usr/bin/env python3
"""
validator.py - Domain and Source URL Validation

Pure predicates used by the classifier, the converters and the pipeline.
Nothing here logs or raises: invalid input simply returns False.
"""
from __future__ import annotations

import re
from typing import Final
from urllib.parse import urlparse


#: One or more dotted labels of [a-z0-9] with internal hyphens,
#: terminated by an alphabetic TLD of 2+ characters.
DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}$",
    re.IGNORECASE,
)

MIN_DOMAIN_LENGTH: Final[int] = 3
MAX_DOMAIN_LENGTH: Final[int] = 255

#: Protocols accepted for filter list sources
VALID_URL_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https", "data"})


def normalize_domain(domain: str) -> str:
    """Normalize domain to lowercase, stripped, without a trailing dot."""
    return domain.lower().strip().rstrip(".")


def is_valid_domain(candidate: str) -> bool:
    """
    Check whether a string is a syntactically plausible domain name.

    Args:
        candidate: The extracted string to check

    Returns:
        True if the candidate is a valid domain

    Example:
        >>> is_valid_domain("a.co")
        True
        >>> is_valid_domain("a-.com")
        False
        >>> is_valid_domain("a.c")
        False
    """
    if not candidate or not isinstance(candidate, str):
        return False

    candidate = candidate.strip()
    if len(candidate) < MIN_DOMAIN_LENGTH or len(candidate) > MAX_DOMAIN_LENGTH:
        return False

    return bool(DOMAIN_PATTERN.match(candidate))


def is_valid_url(url: str) -> bool:
    """
    Check whether a filter list source URL is usable.

    http, https and data URLs are accepted. The host must contain a dot
    or be ``localhost``; data URLs have no host.
    """
    if not url or not isinstance(url, str):
        return False

    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False

    if parsed.scheme.lower() not in VALID_URL_SCHEMES:
        return False
    if parsed.scheme.lower() == "data":
        return True

    hostname = (parsed.hostname or "").lower()
    return "." in hostname or hostname == "localhost"
