#!/usr/bin/env python3
"""
pipeline.py

Main processing pipeline for filter list aggregation.

Usage:
    python -m blockingmachine.pipeline --sources sources.txt --outdir filters/output

Pipeline stages:
1. Load the source list and the personal rules
2. Fetch every enabled source concurrently
3. Admit fetched lines into the rule-sets, one source at a time, in
   declaration order; personal rules are admitted last
4. Write the four rule-sets and stats.json
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from blockingmachine.compiler import (
    PERSONAL_SOURCE,
    ProcessingStats,
    RuleCompiler,
    RuleSets,
)
from blockingmachine.converter import DEFAULT_REWRITE_TARGET
from blockingmachine.downloader import (
    DEFAULT_BACKOFF,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    Downloader,
)
from blockingmachine.sources import (
    Source,
    SourceConfigError,
    load_personal_rules,
    load_sources,
)
from blockingmachine.validator import is_valid_url
from blockingmachine.writer import STATS_FILE, write_rule_sets, write_stats


logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "filters/output"

#: Fetch collaborator: URL -> list text, or None after exhausted retries
Fetcher = Callable[[str], Awaitable[Optional[str]]]


@dataclass
class RunContext:
    """Everything one processing run needs. Nothing outlives the run."""
    sources: list[Source]
    personal_rules: str = ""
    rewrite_target: str = DEFAULT_REWRITE_TARGET
    cache_dir: Path | None = None
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES
    backoff: float = DEFAULT_BACKOFF


@dataclass
class RunResult:
    """Final rule-sets and statistics of a run."""
    sets: RuleSets = field(default_factory=RuleSets)
    stats: ProcessingStats = field(default_factory=ProcessingStats)

    def summary(self) -> dict:
        return self.stats.to_dict(self.sets)


async def _fetch_all(sources: Sequence[Source], fetch: Fetcher) -> list:
    # Results come back in source order regardless of completion order
    return await asyncio.gather(
        *(fetch(source.url) for source in sources),
        return_exceptions=True,
    )


async def run(context: RunContext, fetch: Fetcher | None = None) -> RunResult:
    """
    Run the full aggregation for one context.

    Fetching is concurrent; admission is sequential in declaration order so
    conflict resolution is reproducible. A failed source is recorded and
    skipped, never fatal.

    Args:
        context: Sources, personal rules and tuning for this run
        fetch: Fetch collaborator; defaults to a Downloader built from context

    Returns:
        RunResult with the four rule-sets and the statistics
    """
    compiler = RuleCompiler(rewrite_target=context.rewrite_target)
    stats = compiler.stats

    enabled = [source for source in context.sources if source.enabled]
    stats.sources_total = len(enabled)

    fetchable = []
    for source in enabled:
        if is_valid_url(source.url):
            fetchable.append(source)
        else:
            stats.record_source_failure(source.url, "Invalid URL")

    fetch_errors: dict[str, str] = {}
    if fetch is not None:
        contents = await _fetch_all(fetchable, fetch)
    else:
        async with Downloader(
            cache_dir=context.cache_dir,
            concurrency=context.concurrency,
            timeout=context.timeout,
            retries=context.retries,
            backoff=context.backoff,
        ) as downloader:
            contents = await _fetch_all(fetchable, downloader.fetch)
        fetch_errors = {r.url: r.error for r in downloader.results if r.error}

    for source, content in zip(fetchable, contents):
        if isinstance(content, BaseException):
            stats.record_source_failure(source.url, str(content) or type(content).__name__)
            continue
        if content is None:
            stats.record_source_failure(source.url, fetch_errors.get(source.url, "Fetch failed"))
            continue
        if not content:
            stats.record_source_failure(source.url, "Empty response")
            continue

        lines = compiler.admit_text(content, source.url)
        stats.record_source_success(source.url, lines)
        logger.info("Processed %s: %d lines", source.name, lines)

    if context.personal_rules:
        lines = compiler.admit_text(context.personal_rules, PERSONAL_SOURCE)
        logger.info("Processed %d personal rule lines", lines)

    return RunResult(compiler.sets, stats)


async def run_and_write(
    context: RunContext,
    output_dir: str | Path,
    fetch: Fetcher | None = None,
) -> RunResult:
    """Run the pipeline and persist rule-sets plus stats.json."""
    result = await run(context, fetch)
    await write_rule_sets(result.sets, output_dir, rewrite_target=context.rewrite_target)
    write_stats(Path(output_dir) / STATS_FILE, result.summary())
    return result


def print_summary(result: RunResult) -> None:
    """Print formatted summary."""
    stats = result.stats
    counts = result.sets.counts()

    print("\n" + "=" * 60)
    print("📊 PIPELINE SUMMARY")
    print("=" * 60)

    print(f"\n📁 Sources: {stats.sources_processed}/{stats.sources_total} processed, "
          f"{stats.sources_failed} failed")
    for url, error in stats.source_errors.items():
        print(f"   - {url}: {error}")

    print(f"\n📈 Lines:")
    print(f"   Total input:       {stats.total:>10,}")
    print(f"   Comments:          {stats.comments:>10,}")
    print(f"   Reserved hosts:    {stats.ignored:>10,}")
    print(f"   Invalid:           {stats.invalid:>10,}")
    print(f"   Duplicates:        {stats.duplicates:>10,}")
    print(f"   Conflicts:         {stats.conflicts:>10,}")
    print(f"   Excluded cosmetic: {stats.excluded:>10,}")

    print(f"\n📦 Output breakdown:")
    print(f"   AdGuard:     {counts['adguard']:>10,}")
    print(f"   DNS rewrite: {counts['dnsrewrite']:>10,}")
    print(f"   Hosts:       {counts['hosts']:>10,}")
    print(f"   Browser:     {counts['browser']:>10,}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aggregate filter lists into hosts, AdGuard and browser rule-sets")
    parser.add_argument("--sources", required=True, help="Source list (.json or plain text)")
    parser.add_argument("--personal", help="Personal rules file, admitted after all sources")
    parser.add_argument("--outdir", default=DEFAULT_OUTPUT_DIR, help="Output directory for rule files")
    parser.add_argument("--cache", help="Cache directory for ETag state and fallback copies")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent downloads")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Number of attempts per URL")
    parser.add_argument("--rewrite-target", default=DEFAULT_REWRITE_TARGET, help="Value for $dnsrewrite=")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every rule decision")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        sources = load_sources(args.sources)
    except SourceConfigError as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        return 1

    context = RunContext(
        sources=sources,
        personal_rules=load_personal_rules(args.personal),
        rewrite_target=args.rewrite_target,
        cache_dir=Path(args.cache) if args.cache else None,
        concurrency=args.concurrency,
        timeout=args.timeout,
        retries=args.retries,
    )

    print("🚀 Starting filter list pipeline...")
    print(f"🔄 Fetching {sum(1 for s in sources if s.enabled)} sources...")
    print("-" * 60)

    start_time = time.time()
    try:
        result = asyncio.run(run_and_write(context, args.outdir))
    except OSError as e:
        print(f"\n❌ ERROR: could not write output: {e}", file=sys.stderr)
        return 1
    total_time = time.time() - start_time

    print_summary(result)
    print(f"\n⏱️  Total time: {total_time:.1f}s")
    print(f"✅ Rule files written to {args.outdir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
