#!/usr/bin/env python3
"""
sources.py - Source List and Personal Rules Loading

Two source list formats are accepted:

    sources.json   [{"name": "AdGuard DNS", "url": "https://...", "enabled": true}, ...]

    sources.txt    # comment
                   https://example.org/hosts.txt
                   EasyList = https://easylist.to/easylist/easylist.txt
                   -https://example.org/disabled.txt

A source list that cannot be read or parsed raises SourceConfigError, the
only error that aborts a run. A missing personal rules file is not an error.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse


logger = logging.getLogger(__name__)

COMMENT_PREFIXES = ("#", "!", "//")
DISABLED_PREFIX = "-"


class SourceConfigError(Exception):
    """The source list itself could not be read or parsed."""


@dataclass(frozen=True)
class Source:
    """One configured filter list."""
    name: str
    url: str
    enabled: bool = True


def default_name(url: str) -> str:
    return urlparse(url).netloc or url


def parse_json_sources(text: str) -> list[Source]:
    try:
        entries = json.loads(text)
    except json.JSONDecodeError as e:
        raise SourceConfigError(f"Invalid JSON source list: {e}") from e

    if not isinstance(entries, list):
        raise SourceConfigError("JSON source list must be an array of objects")

    sources = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or not isinstance(entry.get("url"), str):
            raise SourceConfigError(f"Source #{index} has no url")
        url = entry["url"].strip()
        sources.append(Source(
            name=str(entry.get("name") or default_name(url)),
            url=url,
            enabled=bool(entry.get("enabled", True)),
        ))
    return sources


def parse_text_sources(text: str) -> list[Source]:
    sources = []
    for line in text.splitlines():
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith(COMMENT_PREFIXES):
            continue

        enabled = True
        if line.startswith(DISABLED_PREFIX):
            enabled = False
            line = line[1:].strip()

        name = None
        if " = " in line:
            name, _, line = line.partition(" = ")
            name, line = name.strip(), line.strip()

        if line:
            sources.append(Source(name or default_name(line), line, enabled))
    return sources


def load_sources(path: str | Path) -> list[Source]:
    """
    Load the configured sources, enabled and disabled, in declaration order.

    Raises:
        SourceConfigError: if the file is missing, unreadable or malformed
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceConfigError(f"Cannot read source list {path}: {e}") from e

    if path.suffix.lower() == ".json":
        sources = parse_json_sources(text)
    else:
        sources = parse_text_sources(text)

    logger.info("Loaded %d sources from %s", len(sources), path)
    return sources


def load_personal_rules(path: str | Path | None) -> str:
    """Read the personal rules blob; missing file yields an empty string."""
    if path is None:
        return ""

    path = Path(path)
    if not path.exists():
        logger.info("No personal rules file found at %s", path)
        return ""

    return path.read_text(encoding="utf-8-sig", errors="replace")
