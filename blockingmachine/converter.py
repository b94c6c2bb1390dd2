#!/usr/bin/env python3
"""
converter.py - Domain Extraction and Per-Format Rule Conversion

Every network rule is reduced to the domain it targets and re-emitted in
each output dialect:

    0.0.0.0 ads.example.com   ->  hosts:       0.0.0.0 ads.example.com
                                  adguard:     ||ads.example.com^
                                  dnsrewrite:  ||ads.example.com^$dnsrewrite=blockingmachine.xyz
    @@||cdn.example.com^      ->  adguard:     @@||cdn.example.com^
                                  dnsrewrite:  @@||cdn.example.com^ (unmodified)
    ##.banner-ad              ->  browser:     ##.banner-ad

All converters are pure: they never mutate their input, never raise, and
return None for input they cannot express.
"""
from __future__ import annotations

import re
from typing import Final

from blockingmachine.classifier import (
    HOSTS_RULE_PATTERN,
    RuleType,
    classify_rule,
)
from blockingmachine.validator import is_valid_domain, normalize_domain


#: Rewrite answer used by the published lists
DEFAULT_REWRITE_TARGET: Final[str] = "blockingmachine.xyz"

#: Domain part ends at the separator or at the modifier section
DOMAIN_TERMINATOR: Final[re.Pattern[str]] = re.compile(r"[\^$]")


# =============================================================================
# CANONICAL KEYS
# =============================================================================

def blocking_key(domain: str) -> str:
    return f"||{domain}^"


def allow_key(domain: str) -> str:
    return f"@@||{domain}^"


def important_allow_key(domain: str) -> str:
    return f"@@||{domain}^$important"


def hosts_entry(domain: str) -> str:
    return f"0.0.0.0 {domain}"


def dns_rewrite_entry(domain: str, target: str = DEFAULT_REWRITE_TARGET) -> str:
    return f"||{domain}^$dnsrewrite={target}"


# =============================================================================
# DOMAIN EXTRACTION
# =============================================================================

def extract_domain(rule: str) -> str | None:
    """
    Extract the canonical domain a network rule targets.

    Args:
        rule: A raw rule in ABP (||domain^), exception (@@||domain^) or
            hosts (0.0.0.0 domain) form

    Returns:
        Lowercased domain, or None if the rule has no valid domain

    Example:
        >>> extract_domain("@@||Example.com^$important")
        'example.com'
        >>> extract_domain("0.0.0.0 tracker.example.com")
        'tracker.example.com'
        >>> extract_domain("##.banner-ad") is None
        True
    """
    if not isinstance(rule, str):
        return None

    rule = rule.strip()
    candidate: str | None = None

    if rule.startswith("@@||"):
        candidate = DOMAIN_TERMINATOR.split(rule[4:], maxsplit=1)[0]
    elif rule.startswith("||"):
        candidate = DOMAIN_TERMINATOR.split(rule[2:], maxsplit=1)[0]
    elif HOSTS_RULE_PATTERN.match(rule):
        parts = rule.split()
        if len(parts) > 1:
            candidate = parts[1]

    if not candidate:
        return None

    domain = normalize_domain(candidate)
    return domain if is_valid_domain(domain) else None


# =============================================================================
# CONVERTERS
# =============================================================================

def to_hosts(rule: str) -> str | None:
    """
    Convert a blocking rule to hosts format.

    Example:
        >>> to_hosts("||ads.example.com^$third-party")
        '0.0.0.0 ads.example.com'
        >>> to_hosts("@@||example.com^") is None
        True
    """
    if classify_rule(rule) is not RuleType.BLOCKING:
        return None
    domain = extract_domain(rule)
    return hosts_entry(domain) if domain else None


def to_adguard(rule: str) -> str | None:
    """
    Convert a blocking or exception rule to AdGuard syntax.

    Rules already written as ||domain^ or @@||domain^ pass through verbatim,
    modifiers included. Hosts lines become ||domain^.
    """
    if classify_rule(rule) not in (RuleType.BLOCKING, RuleType.EXCEPTION):
        return None

    domain = extract_domain(rule)
    if not domain:
        return None

    rule = rule.strip()
    if rule.startswith(("||", "@@||")):
        return rule
    return blocking_key(domain)


def to_dns_rewrite(rule: str, target: str = DEFAULT_REWRITE_TARGET) -> str | None:
    """
    Convert a rule to the AdGuard DNS-rewrite dialect.

    Blocking rules lose their modifiers and gain $dnsrewrite=<target>.
    Exception rules have no rewrite semantics and pass through unmodified.

    Example:
        >>> to_dns_rewrite("0.0.0.0 ads.example.com")
        '||ads.example.com^$dnsrewrite=blockingmachine.xyz'
        >>> to_dns_rewrite("@@||example.com^")
        '@@||example.com^'
    """
    rule_type = classify_rule(rule)
    if rule_type not in (RuleType.BLOCKING, RuleType.EXCEPTION):
        return None

    domain = extract_domain(rule)
    if not domain:
        return None

    if rule_type is RuleType.EXCEPTION:
        return rule.strip()
    return dns_rewrite_entry(domain, target)


def to_browser(rule: str) -> str | None:
    """
    Convert a rule to the browser (cosmetic) rule-set.

    Cosmetic rules pass through. A commented-out cosmetic rule such as
    "!##.ad" is re-enabled by dropping the leading "!".
    """
    if not isinstance(rule, str):
        return None

    rule = rule.strip()
    if rule.startswith("!") and len(rule) > 1 and not rule[1].isspace():
        rule = rule[1:]

    if classify_rule(rule) is RuleType.COSMETIC:
        return rule
    return None
