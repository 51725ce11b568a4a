"""
Filesystem store for fetched homepages.

Each domain ends up with exactly one artifact inside its shard directory:
``<domain>.gz`` holding the gzip-compressed response body, or ``<domain>.err``
holding the text of the failure.
"""

import gzip
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Union

from .sharding import ensure_directory, shard_path


SUCCESS_SUFFIX = '.gz'
FAILURE_SUFFIX = '.err'
TEMP_SUFFIX = '.tmp'


class StorageError(Exception):
    """Raised when a domain cannot be stored."""
    pass


class ArtifactStatus(Enum):
    """What is already on disk for a domain."""
    ABSENT = 'absent'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class ShardedStore:
    """
    Stores one artifact per domain under a hash-sharded directory tree.

    The store holds no per-domain locks. ``status`` is advisory: two workers
    handed the same domain at the same moment can both see ``ABSENT``.
    """

    def __init__(self, root: Union[str, Path], dir_mode: int = 0o700,
                 file_mode: int = 0o600, compresslevel: int = 9, fsync: bool = True):
        self.root = Path(root)
        self.dir_mode = dir_mode
        self.file_mode = file_mode
        self.compresslevel = compresslevel
        self.fsync = fsync
        self.logger = logging.getLogger(__name__)

    def initialize(self):
        """Create the output root."""
        ensure_directory(self.root, self.dir_mode)
        if not os.access(self.root, os.W_OK):
            raise StorageError(f"Output root is not writable: {self.root}")
        self.logger.info(f"Sharded store initialized at {self.root}")

    def path_for(self, domain: str) -> Path:
        """Shard directory for a domain."""
        self._check_name(domain)
        return shard_path(self.root, domain)

    def success_path(self, domain: str) -> Path:
        return self.path_for(domain) / f"{domain}{SUCCESS_SUFFIX}"

    def failure_path(self, domain: str) -> Path:
        return self.path_for(domain) / f"{domain}{FAILURE_SUFFIX}"

    def status(self, domain: str) -> ArtifactStatus:
        """
        Check what has already been stored for a domain.

        The error marker is checked first, so a domain that has both files
        (which this store never produces) reads as failed.
        """
        directory = self.path_for(domain)
        if (directory / f"{domain}{FAILURE_SUFFIX}").exists():
            return ArtifactStatus.FAILED
        if (directory / f"{domain}{SUCCESS_SUFFIX}").exists():
            return ArtifactStatus.SUCCEEDED
        return ArtifactStatus.ABSENT

    def write_success(self, domain: str, body: bytes) -> int:
        """
        Compress a response body and store it atomically.

        The data is written to a uniquely named temporary file next to the
        final one and renamed into place, so the final name is either absent
        or complete even when two writers race on the same domain.

        Args:
            domain: Domain the body was fetched from
            body: Raw response body

        Returns:
            Size of the compressed artifact in bytes
        """
        directory = ensure_directory(self.path_for(domain), self.dir_mode)
        final_path = directory / f"{domain}{SUCCESS_SUFFIX}"

        compressed = gzip.compress(body, compresslevel=self.compresslevel)

        fd, temp_name = tempfile.mkstemp(dir=directory, prefix=f"{domain}{SUCCESS_SUFFIX}.",
                                         suffix=TEMP_SUFFIX)
        try:
            self._write_fd(fd, compressed)
            os.replace(temp_name, final_path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
            raise

        return len(compressed)

    def write_failure(self, domain: str, error_text: str):
        """Record a failed fetch. Written in place, not atomically."""
        directory = ensure_directory(self.path_for(domain), self.dir_mode)
        self._write_file(directory / f"{domain}{FAILURE_SUFFIX}",
                         error_text.encode('utf-8', errors='replace'))

    def read_success(self, domain: str) -> bytes:
        """Return the decompressed body stored for a domain."""
        return gzip.decompress(self.success_path(domain).read_bytes())

    def read_failure(self, domain: str) -> str:
        """Return the stored error text for a domain."""
        return self.failure_path(domain).read_text(encoding='utf-8')

    def _write_file(self, path: Path, data: bytes):
        self._write_fd(os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.file_mode), data)

    def _write_fd(self, fd: int, data: bytes):
        with os.fdopen(fd, 'wb') as f:
            os.fchmod(f.fileno(), self.file_mode)
            f.write(data)
            if self.fsync:
                f.flush()
                os.fsync(f.fileno())

    @staticmethod
    def _check_name(domain: str):
        # A domain becomes a file name; it must not leave its shard directory.
        if (not domain or domain.startswith('.') or '/' in domain
                or '\\' in domain or '\x00' in domain):
            raise StorageError(f"Invalid domain name: {domain!r}")
