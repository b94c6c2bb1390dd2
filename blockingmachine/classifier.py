#!/usr/bin/env python3
"""
classifier.py - Rule Classification for Mixed Filter List Dialects

Assigns every raw line from a hosts file, an AdGuard list or an ABP/uBlock
list to exactly one category. Classification is the first stage of the
pipeline and decides which output rule-set a line can ever reach.

Categories:
    BLOCKING   ||domain^ network rules, hosts lines (0.0.0.0 / 127.0.0.1),
               leading IPv4 rules
    EXCEPTION  @@||domain^ allow rules, optionally $important
    COSMETIC   element hiding (##, #@#, #?#, #$#, #%#) and network rules whose
               modifiers only make sense inside a browser ($popup, $csp, ...)
    COMMENT    empty lines, !, #, // comments and [Adblock ...] headers
    IGNORE     loopback/broadcast/multicast host lines (127.0.0.1 localhost)
    INVALID    everything else

The function is total: any input, including non-strings, maps to exactly
one category and nothing raises.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Final


logger = logging.getLogger(__name__)


class RuleType(str, Enum):
    """Category of a single filter list line."""
    BLOCKING = "blocking"
    EXCEPTION = "exception"
    COSMETIC = "cosmetic"
    COMMENT = "comment"
    IGNORE = "ignore"
    INVALID = "invalid"


# =============================================================================
# MODIFIER DEFINITIONS
# =============================================================================

# Modifiers that keep a network rule in the browser rule-set.
# A DNS resolver cannot act on any of them.
BROWSER_MODIFIERS: Final[frozenset[str]] = frozenset({
    "popup",        # Block popups
    "redirect",     # Redirect to a local resource
    "replace",      # Replace response content
    "removeparam",  # Remove URL parameters
    "csp",          # Content Security Policy injection
    "css",          # Alias for stylesheet
    "stylesheet",   # CSS files
    "script",       # JavaScript files
})

IMPORTANT_MODIFIER: Final[str] = "important"


# =============================================================================
# RESERVED HOST LINES
# =============================================================================

# Standard entries shipped at the top of every hosts file.
RESERVED_HOST_LINES: Final[frozenset[str]] = frozenset({
    "127.0.0.1 localhost",
    "127.0.0.1 localhost.localdomain",
    "127.0.0.1 local",
    "255.255.255.255 broadcasthost",
    "::1 localhost",
    "::1 ip6-localhost",
    "::1 ip6-loopback",
    "fe80::1%lo0 localhost",
    "ff00::0 ip6-localnet",
    "ff00::0 ip6-mcastprefix",
    "ff02::1 ip6-allnodes",
    "ff02::2 ip6-allrouters",
    "ff02::3 ip6-allhosts",
    "0.0.0.0 0.0.0.0",
})

# Lines starting with any of these addresses never describe a blocked host
RESERVED_ADDRESS_PREFIXES: Final[tuple[str, ...]] = (
    "255.255.255.255",
    "::1",
    "fe80::1%lo0",
    "ff00::0",
    "ff02::1",
    "ff02::2",
    "ff02::3",
)

LOCAL_HOSTNAMES: Final[frozenset[str]] = frozenset({
    "localhost", "localhost.localdomain", "local", "broadcasthost",
    "ip6-localhost", "ip6-loopback", "ip6-localnet",
    "ip6-mcastprefix", "ip6-allnodes", "ip6-allrouters", "ip6-allhosts",
})


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: Cosmetic/element-hiding markers anywhere in the line
#: These include: ## #@# #?# #$# #@?# #@$# #%#
COSMETIC_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"#[@$?%]*#"
)

#: Comment lines: ! and // prefixes, and [Adblock Plus 2.0] style headers
COMMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?:!|//|\[adblock)",
    re.IGNORECASE,
)

#: Hosts-format blocking rule: 0.0.0.0 domain / 127.0.0.1 domain
HOSTS_RULE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?:0\.0\.0\.0|127\.0\.0\.1)[ \t]+\S"
)

#: Any hosts-style line (IPv4 or IPv6 address followed by a host)
HOSTS_LINE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^([\d.:a-fA-F]+(?:%\w+)?)\s+(\S+)"
)

#: Leading dotted-quad IPv4 address
IPV4_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}"
)

#: Modifier section of an ABP rule: $modifier1,modifier2,... at end of rule
MODIFIER_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$([^$]+)$")


# =============================================================================
# PREDICATES
# =============================================================================

def is_comment(line: str) -> bool:
    """
    Check if line is a comment (starts with !, // or an [Adblock] header).

    Lines starting with # are handled separately by classify_rule, since
    ##selector is a cosmetic rule and not a comment.

    Example:
        >>> is_comment("! Title: EasyList")
        True
        >>> is_comment("||example.com^")
        False
    """
    return bool(COMMENT_PATTERN.match(line))


def is_cosmetic_rule(line: str) -> bool:
    """
    Check if line contains a cosmetic/element-hiding marker.

    Example:
        >>> is_cosmetic_rule("example.com##.ad-banner")
        True
        >>> is_cosmetic_rule("||example.com^")
        False
    """
    return bool(COSMETIC_PATTERN.search(line))


def is_reserved_host(line: str) -> bool:
    """
    Check if line is a loopback/broadcast/multicast hosts entry.

    Example:
        >>> is_reserved_host("127.0.0.1  localhost")
        True
        >>> is_reserved_host("0.0.0.0 ads.example.com")
        False
    """
    normalized = " ".join(line.split())
    if normalized in RESERVED_HOST_LINES:
        return True

    if normalized.startswith(RESERVED_ADDRESS_PREFIXES):
        return True

    match = HOSTS_LINE_PATTERN.match(normalized)
    if match and match.group(2).lower() in LOCAL_HOSTNAMES:
        return True

    return False


def extract_modifiers(rule: str) -> set[str]:
    """
    Extract modifier names from an ABP-style rule.

    Handles modifiers with values (key=value) and negation (~modifier).

    Args:
        rule: The ABP rule to parse

    Returns:
        Set of modifier names (lowercase, without ~ prefix or =value suffix)

    Example:
        >>> extract_modifiers("||example.com^$script,third-party")
        {'script', 'third-party'}
        >>> extract_modifiers("@@||example.com^$important")
        {'important'}
        >>> extract_modifiers("||example.com^")
        set()
    """
    match = MODIFIER_PATTERN.search(rule)
    if not match:
        return set()

    modifiers: set[str] = set()
    for part in match.group(1).split(","):
        # dnsrewrite=example.com, client=192.168.1.1
        modifier_name = part.split("=")[0].strip().lower()
        if modifier_name.startswith("~"):
            modifier_name = modifier_name[1:]
        if modifier_name:
            modifiers.add(modifier_name)

    return modifiers


def has_important_modifier(rule: str) -> bool:
    """Check if rule carries the $important priority modifier."""
    return IMPORTANT_MODIFIER in extract_modifiers(rule)


# =============================================================================
# CLASSIFICATION
# =============================================================================

def classify_rule(line: str) -> RuleType:
    """
    Classify a single raw filter list line.

    Args:
        line: Raw line from any supported dialect

    Returns:
        The RuleType of the line

    Example:
        >>> classify_rule("||ads.example.com^")
        <RuleType.BLOCKING: 'blocking'>
        >>> classify_rule("@@||example.com^$important")
        <RuleType.EXCEPTION: 'exception'>
        >>> classify_rule("##.banner-ad")
        <RuleType.COSMETIC: 'cosmetic'>
        >>> classify_rule("127.0.0.1 localhost")
        <RuleType.IGNORE: 'ignore'>
    """
    if not isinstance(line, str):
        return RuleType.INVALID

    line = line.strip()
    if not line:
        return RuleType.COMMENT

    if is_reserved_host(line):
        return RuleType.IGNORE

    # "##.ad" is element hiding, "# text" is a comment
    if line.startswith("#"):
        if COSMETIC_PATTERN.match(line):
            return RuleType.COSMETIC
        return RuleType.COMMENT

    if is_comment(line):
        return RuleType.COMMENT

    # Hosts lines may carry an inline "## note" after the domain
    if HOSTS_RULE_PATTERN.match(line):
        return RuleType.BLOCKING

    if is_cosmetic_rule(line):
        return RuleType.COSMETIC

    if extract_modifiers(line) & BROWSER_MODIFIERS:
        return RuleType.COSMETIC

    if line.startswith("@@||"):
        if "^" in line:
            return RuleType.EXCEPTION
    elif line.startswith("||") and "^" in line:
        return RuleType.BLOCKING

    if IPV4_PATTERN.match(line):
        return RuleType.BLOCKING

    logger.debug("Unclassified rule: %s", line)
    return RuleType.INVALID
