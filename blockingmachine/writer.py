#!/usr/bin/env python3
"""
writer.py - Rule Set Persistence

Writes each rule-set as a sorted list behind a metadata header:

    ! Title: BlockingMachine AdGuard Filter List
    ! Description: Domain blocking rules
    ! Homepage: https://github.com/greigh/BlockingMachine
    ! Last modified: 2026-10-18T12:00:00Z
    ! Number of rules: 2
    ! Format: ||domain.tld^
    !

    ||ads.example.com^
    @@||cdn.example.com^

Hosts output uses '#' as comment character, every other output uses '!'.
Writes overwrite existing files and create missing directories.
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Final, Iterable, NamedTuple

import aiofiles

from blockingmachine.compiler import RuleSets
from blockingmachine.converter import DEFAULT_REWRITE_TARGET


logger = logging.getLogger(__name__)

DEFAULT_TITLE: Final[str] = "BlockingMachine"
DEFAULT_DESCRIPTION: Final[str] = "Domain blocking rules"
DEFAULT_HOMEPAGE: Final[str] = "https://github.com/greigh/BlockingMachine"

STATS_FILE: Final[str] = "stats.json"


class OutputFile(NamedTuple):
    """Where and how one rule-set is written."""
    attribute: str   # RuleSets field
    filename: str
    kind: str        # Header type


OUTPUT_FILES: Final[tuple[OutputFile, ...]] = (
    OutputFile("adguard_set", "adguard.txt", "AdGuard"),
    OutputFile("dns_rewrite_set", "adguard_dnsrewrite.txt", "DNS Rewrite"),
    OutputFile("browser_rules_set", "browserRules.txt", "Browser"),
    OutputFile("hosts_set", "hosts.txt", "Hosts"),
)


def comment_char(kind: str) -> str:
    return "#" if kind == "Hosts" else "!"


def generate_header(
    kind: str,
    count: int,
    rewrite_target: str = DEFAULT_REWRITE_TARGET,
    title: str = DEFAULT_TITLE,
    description: str = DEFAULT_DESCRIPTION,
    homepage: str = DEFAULT_HOMEPAGE,
) -> str:
    """
    Build the metadata header for one output file.

    Args:
        kind: "Hosts", "AdGuard", "DNS Rewrite" or "Browser"
        count: Number of rules in the file

    Returns:
        Header block without a trailing newline
    """
    c = comment_char(kind)
    now = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

    lines = [
        f"{c} Title: {title} {kind} Filter List",
        f"{c} Description: {description}",
        f"{c} Homepage: {homepage}",
        f"{c} Last modified: {now}",
        f"{c} Number of rules: {count}",
    ]

    if kind == "DNS Rewrite":
        lines.append(f"{c} Format: ||domain.tld^$dnsrewrite={rewrite_target}")
    elif kind == "Hosts":
        lines.append(f"{c} Format: 0.0.0.0 domain.tld")
    elif kind == "AdGuard":
        lines.append(f"{c} Format: ||domain.tld^")

    lines.append(c)
    return "\n".join(lines)


async def write_rule_set(path: str | Path, lines: Iterable[str], header: str) -> int:
    """
    Write a header and the sorted rules to path.

    Returns:
        Number of rules written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    rules = sorted(lines)
    content = header.rstrip("\n") + "\n\n"
    if rules:
        content += "\n".join(rules) + "\n"

    async with aiofiles.open(path, "w", encoding="utf-8", newline="\n") as f:
        await f.write(content)

    logger.info("Wrote %d rules to %s", len(rules), path)
    return len(rules)


async def write_rule_sets(
    sets: RuleSets,
    output_dir: str | Path,
    rewrite_target: str = DEFAULT_REWRITE_TARGET,
    homepage: str = DEFAULT_HOMEPAGE,
) -> dict[str, Path]:
    """Write all four rule-sets. Returns filename -> written path."""
    output_dir = Path(output_dir)
    written: dict[str, Path] = {}

    for output in OUTPUT_FILES:
        rules = getattr(sets, output.attribute)
        header = generate_header(
            output.kind,
            len(rules),
            rewrite_target=rewrite_target,
            homepage=homepage,
        )
        path = output_dir / output.filename
        await write_rule_set(path, rules, header)
        written[output.filename] = path

    return written


def write_stats(path: str | Path, stats: dict) -> None:
    """Save the statistics record as JSON, atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(stats, f, indent=2)
    temp_path.replace(path)
    logger.info("Wrote statistics to %s", path)
