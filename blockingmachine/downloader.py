#!/usr/bin/env python3
"""
downloader.py - Async Filter List Downloader with Smart Caching

Fetches filter lists concurrently with bounded retries, exponential backoff
and optional ETag/Last-Modified caching. When a cache directory is given, a
download that fails after all retries falls back to the cached copy.

Inline data: URLs are decoded locally and never touch the network.

Downloader.fetch() is the fetch collaborator used by the pipeline: it
returns the list text, or None once the retry budget is exhausted. It never
raises.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import NamedTuple
from urllib.parse import unquote_to_bytes, urlparse

import aiofiles
import aiohttp


logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_TIMEOUT = 30
DEFAULT_RETRIES = 3
DEFAULT_CONCURRENCY = 8
DEFAULT_BACKOFF = 1.0

# State file for ETag/Last-Modified tracking
STATE_FILE = "state.json"


class FetchResult(NamedTuple):
    """Result of a single fetch operation."""
    url: str
    content: str | None
    changed: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.content is not None


def url_to_filename(url: str) -> str:
    """Generate a safe, unique cache filename from a URL."""
    url_hash = hashlib.sha256(url.encode()).hexdigest()[:16]
    domain = (urlparse(url).netloc or "unknown").replace(".", "_").replace(":", "_")[:30]
    return f"{domain}_{url_hash}.txt"


def decode_content(raw: bytes) -> str:
    return raw.decode("utf-8-sig", errors="replace")


def decode_data_url(url: str) -> str:
    """
    Decode an inline data: URL source.

    Example:
        >>> decode_data_url("data:text/plain,%7C%7Cads.example.com%5E")
        '||ads.example.com^'
        >>> decode_data_url("data:text/plain;base64,fHxhZHMuZXhhbXBsZS5jb21e")
        '||ads.example.com^'

    Raises:
        ValueError: if the URL has no data part or bad base64
    """
    header, sep, data = url.partition(",")
    if not sep:
        raise ValueError("data URL without ','")

    raw = unquote_to_bytes(data)
    if header.lower().endswith(";base64"):
        try:
            raw = base64.b64decode(raw, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 data URL: {e}") from e
    return decode_content(raw)


def load_state(cache_dir: Path) -> dict:
    """Load state.json containing ETag/Last-Modified cache."""
    state_path = cache_dir / STATE_FILE
    if state_path.exists():
        try:
            with open(state_path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not load %s: %s", state_path, e)
    return {}


def save_state(cache_dir: Path, state: dict) -> None:
    """Save state.json atomically."""
    state_path = cache_dir / STATE_FILE
    temp_path = state_path.with_suffix(".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
        temp_path.replace(state_path)
    except OSError as e:
        logger.warning("Could not save %s: %s", state_path, e)


async def _read_cached(cache_path: Path | None) -> str | None:
    if cache_path is None or not cache_path.exists():
        return None
    try:
        async with aiofiles.open(cache_path, "rb") as f:
            return decode_content(await f.read())
    except OSError as e:
        logger.warning("Could not read cached copy %s: %s", cache_path, e)
        return None


async def _fallback(url: str, cache_path: Path | None, error: str) -> FetchResult:
    cached = await _read_cached(cache_path)
    if cached is not None:
        return FetchResult(url, cached, changed=False, error=f"{error}, using cached version")
    return FetchResult(url, None, changed=False, error=error)


async def fetch_url(
    session: aiohttp.ClientSession,
    url: str,
    cache_dir: Path | None = None,
    state: dict | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
) -> FetchResult:
    """
    Fetch a single URL with retries and ETag/Last-Modified caching.

    Args:
        session: Open aiohttp session
        url: Filter list URL
        cache_dir: Directory for cached copies, or None to disable caching
        state: Mutable ETag/Last-Modified state, keyed by URL
        timeout: Total timeout per attempt, in seconds
        retries: Number of attempts
        backoff: Base delay; retry n (from 1) waits backoff * 2**(n-1)

    Returns:
        FetchResult with the decoded content, or content=None on failure
    """
    state = state if state is not None else {}
    cache_path = cache_dir / url_to_filename(url) if cache_dir is not None else None

    # Conditional headers only make sense if we still hold the cached body
    headers = {}
    if cache_path is not None and cache_path.exists():
        url_state = state.get(url, {})
        if url_state.get("etag"):
            headers["If-None-Match"] = url_state["etag"]
        if url_state.get("last_modified"):
            headers["If-Modified-Since"] = url_state["last_modified"]

    error = "Max retries exceeded"
    for attempt in range(retries):
        if attempt:
            await asyncio.sleep(backoff * 2 ** (attempt - 1))

        logger.debug("Fetching %s (attempt %d/%d)", url, attempt + 1, retries)
        try:
            async with session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:

                # 304 Not Modified - use cached version
                if response.status == 304:
                    cached = await _read_cached(cache_path)
                    if cached is not None:
                        return FetchResult(url, cached, changed=False)
                    headers = {}
                    error = "HTTP 304 without cached copy"
                    continue

                if response.status >= 400:
                    error = f"HTTP {response.status}"
                    continue

                raw = await response.read()

                if cache_path is not None:
                    async with aiofiles.open(cache_path, "wb") as f:
                        await f.write(raw)

                    new_state = {}
                    if "ETag" in response.headers:
                        new_state["etag"] = response.headers["ETag"]
                    if "Last-Modified" in response.headers:
                        new_state["last_modified"] = response.headers["Last-Modified"]
                    new_state["filename"] = cache_path.name
                    new_state["fetched_at"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
                    state[url] = new_state

                return FetchResult(url, decode_content(raw), changed=True)

        except asyncio.TimeoutError:
            error = "Timeout"
        except aiohttp.ClientError as e:
            error = str(e) or type(e).__name__

        logger.debug("Attempt %d for %s failed: %s", attempt + 1, url, error)

    return await _fallback(url, cache_path, error)


class Downloader:
    """
    Shared session for fetching many filter lists concurrently.

    Usage:
        async with Downloader(cache_dir=Path(".cache")) as downloader:
            texts = await asyncio.gather(*(downloader.fetch(u) for u in urls))
    """

    def __init__(
        self,
        cache_dir: Path | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
    ) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.concurrency = concurrency
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.results: list[FetchResult] = []
        self._state: dict = {}
        self._session: aiohttp.ClientSession | None = None
        self._semaphore: asyncio.Semaphore | None = None

    async def __aenter__(self) -> "Downloader":
        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._state = load_state(self.cache_dir)

        self._semaphore = asyncio.Semaphore(self.concurrency)
        connector = aiohttp.TCPConnector(limit=self.concurrency, limit_per_host=2)
        self._session = aiohttp.ClientSession(connector=connector)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self.cache_dir is not None:
            save_state(self.cache_dir, self._state)

    async def fetch_result(self, url: str) -> FetchResult:
        if self._session is None or self._semaphore is None:
            raise RuntimeError("Downloader must be used as an async context manager")

        if url[:5].lower() == "data:":
            try:
                result = FetchResult(url, decode_data_url(url), changed=True)
            except ValueError as e:
                result = FetchResult(url, None, error=str(e))
        else:
            async with self._semaphore:
                result = await fetch_url(
                    self._session,
                    url,
                    cache_dir=self.cache_dir,
                    state=self._state,
                    timeout=self.timeout,
                    retries=self.retries,
                    backoff=self.backoff,
                )

        self.results.append(result)
        if result.error:
            logger.warning("%s: %s", url, result.error)
        return result

    async def fetch(self, url: str) -> str | None:
        """Fetch collaborator contract: list text, or None after retries."""
        return (await self.fetch_result(url)).content
