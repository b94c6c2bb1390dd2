#!/usr/bin/env python3
"""
compiler.py - Rule Set Compiler with Cross-Format Deduplication and Conflict Resolution

This module is the core of the pipeline. Rules from every source are admitted
one line at a time into four output rule-sets:

    adguard_set        ||domain^  @@||domain^  @@||domain^$important
    hosts_set          0.0.0.0 domain
    dns_rewrite_set    ||domain^$dnsrewrite=<target>  @@||domain^
    browser_rules_set  ##selector  example.com#@#.ad  ...

KEY INSIGHT - DOMAIN KEYS:
    Network rules are reduced to their domain before deduplication, so
    "0.0.0.0 ads.example.com", "||ads.example.com^" and
    "||ADS.example.com^$third-party" all collide on the same keys:

        block key             ||ads.example.com^
        allow key             @@||ads.example.com^
        important allow key   @@||ads.example.com^$important

FORMAT FAN-OUT:
    An ABP blocking rule lands in all three DNS-level sets. A hosts line
    lands in hosts_set and dns_rewrite_set only. hosts_set and
    dns_rewrite_set therefore always hold the same blocked domains, and every
    blocked domain of adguard_set has both counterparts.

CONFLICT POLICY (first match wins):
    a. Important exception  -> removes the block and the plain allow, wins
    b. Important allow held -> any later block or plain allow is rejected
    c. Plain exception      -> replaces an existing block (last exception wins)
    d. Plain block          -> rejected when a plain allow is held
    e. No conflict          -> inserted, or counted as a duplicate

Cosmetic rules are deduplicated on their exact text.
"""
from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Final, Iterable

from blockingmachine.classifier import (
    HOSTS_RULE_PATTERN,
    RuleType,
    classify_rule,
    has_important_modifier,
)
from blockingmachine.converter import (
    DEFAULT_REWRITE_TARGET,
    allow_key,
    blocking_key,
    dns_rewrite_entry,
    extract_domain,
    hosts_entry,
    important_allow_key,
    to_browser,
)


logger = logging.getLogger(__name__)

PERSONAL_SOURCE: Final[str] = "personal"

# Cookie-banner hiding rules break consent dialogs on too many sites
EXCLUDED_COSMETIC_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"###cookie-modal$"),
    re.compile(r"##\.cookie-modal$"),
    re.compile(r"##\.Cookie"),
    re.compile(r"##\.cookie"),
    re.compile(r"###cookie"),
    re.compile(r"###Cookie"),
)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class Outcome(str, Enum):
    """What admit() did with a line."""
    ADDED = "added"
    REPLACED = "replaced"      # Inserted after removing a conflicting rule
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"      # Rejected by the block/allow policy
    EXCLUDED = "excluded"
    INVALID = "invalid"
    SKIPPED = "skipped"        # Comment or reserved host line


@dataclass
class RuleSets:
    """The four output rule-sets of a single processing run."""
    hosts_set: set[str] = field(default_factory=set)
    adguard_set: set[str] = field(default_factory=set)
    browser_rules_set: set[str] = field(default_factory=set)
    dns_rewrite_set: set[str] = field(default_factory=set)

    def counts(self) -> dict[str, int]:
        return {
            "adguard": len(self.adguard_set),
            "hosts": len(self.hosts_set),
            "dnsrewrite": len(self.dns_rewrite_set),
            "browser": len(self.browser_rules_set),
        }


@dataclass
class ProcessingStats:
    """Counters mutated by every classification and dedup decision."""
    total: int = 0
    comments: int = 0
    ignored: int = 0
    invalid: int = 0
    duplicates: int = 0
    conflicts: int = 0
    excluded: int = 0

    # Insertions per output set
    valid: Counter = field(default_factory=Counter)
    # Lines per RuleType
    by_type: Counter = field(default_factory=Counter)

    sources_total: int = 0
    sources_processed: int = 0
    sources_failed: int = 0
    source_errors: dict[str, str] = field(default_factory=dict)
    source_lines: dict[str, int] = field(default_factory=dict)

    @property
    def rejected(self) -> int:
        """Rules dropped as duplicates or by the conflict policy."""
        return self.duplicates + self.conflicts

    def record_source_success(self, source: str, lines: int) -> None:
        self.sources_processed += 1
        self.source_lines[source] = lines

    def record_source_failure(self, source: str, error: str) -> None:
        self.sources_failed += 1
        self.source_errors[source] = error
        logger.warning("Source failed: %s (%s)", source, error)

    def to_dict(self, sets: RuleSets | None = None) -> dict:
        """Serializable view of the statistics, with final set sizes."""
        return {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "rules": {
                "total": self.total,
                "comments": self.comments,
                "ignored": self.ignored,
                "invalid": self.invalid,
                "duplicates": self.duplicates,
                "conflicts": self.conflicts,
                "excluded": self.excluded,
                "valid": {
                    name: self.valid.get(name, 0)
                    for name in ("adguard", "hosts", "dnsrewrite", "browser")
                },
                "by_type": {t.value: self.by_type.get(t.value, 0) for t in RuleType},
            },
            "sets": sets.counts() if sets is not None else {},
            "sources": {
                "total": self.sources_total,
                "processed": self.sources_processed,
                "failed": self.sources_failed,
                "errors": dict(self.source_errors),
                "lines": dict(self.source_lines),
            },
        }


# ============================================================================
# COMPILER
# ============================================================================

class RuleCompiler:
    """
    Accumulates rules from many sources into deduplicated rule-sets.

    One instance serves one processing run. admit() is synchronous and must
    be called from a single task; the run-level ordering of sources decides
    which rule wins a conflict.

    Example:
        >>> compiler = RuleCompiler()
        >>> compiler.admit("||bad.com^")
        <Outcome.ADDED: 'added'>
        >>> compiler.admit("@@||bad.com^$important")
        <Outcome.REPLACED: 'replaced'>
        >>> compiler.admit("||bad.com^")
        <Outcome.CONFLICT: 'conflict'>
        >>> sorted(compiler.sets.adguard_set)
        ['@@||bad.com^$important']
    """

    def __init__(
        self,
        rewrite_target: str = DEFAULT_REWRITE_TARGET,
        excluded_patterns: Iterable[re.Pattern[str]] = EXCLUDED_COSMETIC_PATTERNS,
    ) -> None:
        self.rewrite_target = rewrite_target
        self.excluded_patterns = tuple(excluded_patterns)
        self.sets = RuleSets()
        self.stats = ProcessingStats()

    # ------------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------------

    def admit(self, line: str, source: str = PERSONAL_SOURCE) -> Outcome:
        """
        Classify one raw line and merge it into the rule-sets.

        Args:
            line: Raw line from a filter list
            source: Identifier of the originating source (URL or "personal")

        Returns:
            The Outcome of the admission
        """
        line = line.strip() if isinstance(line, str) else ""
        self.stats.total += 1

        rule_type = classify_rule(line)
        self.stats.by_type[rule_type.value] += 1

        if rule_type is RuleType.COMMENT:
            self.stats.comments += 1
            return Outcome.SKIPPED

        if rule_type is RuleType.IGNORE:
            self.stats.ignored += 1
            return Outcome.SKIPPED

        if rule_type is RuleType.COSMETIC:
            return self._admit_cosmetic(line, source)

        if rule_type is RuleType.INVALID:
            return self._reject_invalid(line, source)

        domain = extract_domain(line)
        if not domain:
            return self._reject_invalid(line, source)

        if rule_type is RuleType.EXCEPTION:
            if has_important_modifier(line):
                return self._admit_important_exception(domain, source)
            return self._admit_exception(domain, source)

        return self._admit_block(domain, line, source)

    def admit_lines(self, lines: Iterable[str], source: str = PERSONAL_SOURCE) -> int:
        """Admit every line in order. Returns the number of lines seen."""
        count = 0
        for line in lines:
            self.admit(line, source)
            count += 1
        return count

    def admit_text(self, text: str, source: str = PERSONAL_SOURCE) -> int:
        """Admit a whole filter list given as text."""
        return self.admit_lines(text.splitlines(), source)

    # ------------------------------------------------------------------------
    # Cosmetic rules
    # ------------------------------------------------------------------------

    def _admit_cosmetic(self, line: str, source: str) -> Outcome:
        rule = to_browser(line)
        if rule is None:
            return self._reject_invalid(line, source)

        if any(pattern.search(rule) for pattern in self.excluded_patterns):
            self.stats.excluded += 1
            logger.debug("Excluded browser rule: %s (%s)", rule, source)
            return Outcome.EXCLUDED

        if rule in self.sets.browser_rules_set:
            return self._reject_duplicate(rule, source)

        self.sets.browser_rules_set.add(rule)
        self.stats.valid["browser"] += 1
        return Outcome.ADDED

    # ------------------------------------------------------------------------
    # Network rules
    # ------------------------------------------------------------------------

    def _is_blocked(self, domain: str) -> bool:
        # Every block, whatever its input format, has a hosts entry
        return hosts_entry(domain) in self.sets.hosts_set

    def _add_block(self, domain: str, with_adguard: bool) -> None:
        sets = self.sets
        if with_adguard:
            sets.adguard_set.add(blocking_key(domain))
            self.stats.valid["adguard"] += 1

        entry = hosts_entry(domain)
        if entry not in sets.hosts_set:
            sets.hosts_set.add(entry)
            self.stats.valid["hosts"] += 1

        rewrite = dns_rewrite_entry(domain, self.rewrite_target)
        if rewrite not in sets.dns_rewrite_set:
            sets.dns_rewrite_set.add(rewrite)
            self.stats.valid["dnsrewrite"] += 1

    def _remove_block(self, domain: str) -> None:
        self.sets.adguard_set.discard(blocking_key(domain))
        self.sets.hosts_set.discard(hosts_entry(domain))
        self.sets.dns_rewrite_set.discard(dns_rewrite_entry(domain, self.rewrite_target))

    def _add_allow_mirror(self, domain: str) -> None:
        # Exceptions have no rewrite semantics: mirrored as a plain allow
        key = allow_key(domain)
        if key not in self.sets.dns_rewrite_set:
            self.sets.dns_rewrite_set.add(key)
            self.stats.valid["dnsrewrite"] += 1

    def _admit_important_exception(self, domain: str, source: str) -> Outcome:
        adguard = self.sets.adguard_set
        important = important_allow_key(domain)

        if important in adguard:
            return self._reject_duplicate(important, source)

        outcome = Outcome.ADDED
        if self._is_blocked(domain):
            self._remove_block(domain)
            self._record_conflict(important, blocking_key(domain), source)
            outcome = Outcome.REPLACED

        plain = allow_key(domain)
        if plain in adguard:
            adguard.discard(plain)
            self._record_conflict(important, plain, source)
            outcome = Outcome.REPLACED

        adguard.add(important)
        self.stats.valid["adguard"] += 1
        self._add_allow_mirror(domain)
        return outcome

    def _admit_exception(self, domain: str, source: str) -> Outcome:
        adguard = self.sets.adguard_set
        key = allow_key(domain)

        if important_allow_key(domain) in adguard:
            return self._reject_conflict(key, important_allow_key(domain), source)

        if key in adguard:
            return self._reject_duplicate(key, source)

        outcome = Outcome.ADDED
        if self._is_blocked(domain):
            self._remove_block(domain)
            self._record_conflict(key, blocking_key(domain), source)
            outcome = Outcome.REPLACED

        adguard.add(key)
        self.stats.valid["adguard"] += 1
        self._add_allow_mirror(domain)
        return outcome

    def _admit_block(self, domain: str, line: str, source: str) -> Outcome:
        adguard = self.sets.adguard_set
        key = blocking_key(domain)

        for allow in (important_allow_key(domain), allow_key(domain)):
            if allow in adguard:
                return self._reject_conflict(key, allow, source)

        # Hosts lines stay out of the AdGuard list
        with_adguard = not HOSTS_RULE_PATTERN.match(line)

        if with_adguard:
            if key in adguard:
                return self._reject_duplicate(key, source)
        elif self._is_blocked(domain):
            return self._reject_duplicate(hosts_entry(domain), source)

        self._add_block(domain, with_adguard)
        return Outcome.ADDED

    # ------------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------------

    def _reject_invalid(self, line: str, source: str) -> Outcome:
        self.stats.invalid += 1
        logger.debug("Invalid rule from %s: %s", source, line)
        return Outcome.INVALID

    def _reject_duplicate(self, rule: str, source: str) -> Outcome:
        self.stats.duplicates += 1
        logger.debug("Duplicate rule from %s: %s", source, rule)
        return Outcome.DUPLICATE

    def _record_conflict(self, winner: str, loser: str, source: str) -> None:
        self.stats.conflicts += 1
        logger.debug("Conflict from %s: %s overrides %s", source, winner, loser)

    def _reject_conflict(self, rule: str, held: str, source: str) -> Outcome:
        self._record_conflict(held, rule, source)
        return Outcome.CONFLICT
