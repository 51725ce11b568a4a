"""
Homepage fetcher

Fetches the root page of every domain in a list exactly once and stores it
gzip-compressed under a hash-sharded directory tree.
"""

__version__ = "1.0.0"
__description__ = "Bulk domain homepage fetcher with idempotent sharded storage"
