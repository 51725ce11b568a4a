"""
Storage layer for fetched homepages.
"""

from .sharding import shard_path, ensure_directory
from .store import ShardedStore, ArtifactStatus, StorageError

__all__ = ['shard_path', 'ensure_directory', 'ShardedStore', 'ArtifactStatus', 'StorageError']
