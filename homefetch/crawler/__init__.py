"""
Fetching, worker pool and input dispatch.
"""

from .fetcher import HomepageFetcher, FetchResult, FetchError, fetch, homepage_url
from .pool import WorkerPool, JobOutcome, OutcomeKind, PoolStats
from .dispatcher import Dispatcher, InputReadError

__all__ = [
    'HomepageFetcher', 'FetchResult', 'FetchError', 'fetch', 'homepage_url',
    'WorkerPool', 'JobOutcome', 'OutcomeKind', 'PoolStats',
    'Dispatcher', 'InputReadError'
]
