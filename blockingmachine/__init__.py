"""
blockingmachine package - Filter List Aggregator

Modules:
    validator: Domain and source URL validation
    classifier: Rule classification across hosts/AdGuard/ABP dialects
    converter: Domain extraction and per-format conversion
    compiler: Cross-format deduplication and block/allow conflict resolution
    downloader: Concurrent filter list fetching with retries and caching
    sources: Source list and personal rules loading
    writer: Rule-set and statistics persistence
    pipeline: Main processing pipeline
"""

__version__ = "1.0.0"
