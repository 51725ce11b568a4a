"""
Hash-sharded addressing for stored homepages.

Every domain maps to a three-level directory under the output root so that
no single directory accumulates millions of files.
"""

import os
from pathlib import Path
from typing import Tuple, Union

from xxhash import xxh64_intdigest


SHARD_SALTS = (0, 1024, 2048)
SHARD_MODULUS = 255


def shard_segments(domain: str) -> Tuple[int, int, int]:
    """Return the three shard segment numbers for a domain, each in [0, 255)."""
    data = domain.encode('utf-8')
    return tuple(xxh64_intdigest(data, seed=salt) % SHARD_MODULUS for salt in SHARD_SALTS)


def shard_path(root: Union[str, Path], domain: str) -> Path:
    """
    Map a domain to its shard directory.

    Args:
        root: Output root directory
        domain: Domain name

    Returns:
        ``root/<h0>/<h1>/<h2>``; the directory is not created here
    """
    h0, h1, h2 = shard_segments(domain)
    return Path(root) / str(h0) / str(h1) / str(h2)


def ensure_directory(path: Path, mode: int = 0o700) -> Path:
    """Create a shard directory and its parents; existing directories are fine."""
    os.makedirs(path, mode=mode, exist_ok=True)
    return path
