"""
Dispatcher: reads domain names from an input stream and feeds the worker pool.
"""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Optional, TextIO

from .pool import WorkerPool


class InputReadError(Exception):
    """Raised when the input stream cannot be read. Fatal for the process."""
    pass


_END_OF_INPUT = object()


class _LineReader:
    """
    Reads lines on a daemon thread and hands them to the event loop one at a time.

    stdin may be a regular file, which the event loop cannot watch, and a
    thread blocked in ``readline`` must not keep the process alive after
    shutdown. Text streams are read through their byte buffer and decoded one
    line at a time, so an undecodable byte only spoils its own line.
    """

    def __init__(self, stream: TextIO, loop: asyncio.AbstractEventLoop):
        self.stream = getattr(stream, 'buffer', stream)
        self.loop = loop
        self.lines: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.thread = threading.Thread(target=self._read, name='homefetch-reader', daemon=True)

    def start(self):
        self.thread.start()

    def _read(self):
        try:
            while True:
                try:
                    line = self.stream.readline()
                except (OSError, ValueError) as e:
                    self._put(InputReadError(f"Error reading input: {e}"))
                    return
                if not line:
                    self._put(_END_OF_INPUT)
                    return
                if isinstance(line, bytes):
                    line = line.decode('utf-8', errors='replace')
                self._put(line)
        except (concurrent.futures.CancelledError, RuntimeError):
            # The loop went away; nobody is waiting for more lines.
            return

    def _put(self, item):
        asyncio.run_coroutine_threadsafe(self.lines.put(item), self.loop).result()

    async def readline(self) -> Optional[str]:
        """Next line, or None at end of input."""
        item = await self.lines.get()
        if item is _END_OF_INPUT:
            return None
        if isinstance(item, InputReadError):
            raise item
        return item


class Dispatcher:
    """Feeds one domain per non-empty input line into the worker pool."""

    def __init__(self, pool: WorkerPool, stream: TextIO):
        self.pool = pool
        self.stream = stream
        self.logger = logging.getLogger(__name__)
        self.submitted = 0

    async def run(self) -> int:
        """
        Read the stream until it ends or the pool starts shutting down.

        Returns:
            Number of domains handed to the pool

        Raises:
            InputReadError: If reading the stream fails
        """
        reader = _LineReader(self.stream, asyncio.get_running_loop())
        reader.start()

        while True:
            line = await reader.readline()
            if line is None:
                self.logger.info(f"End of input after {self.submitted} domain(s)")
                break

            domain = line.strip()
            if not domain:
                continue

            if not await self.pool.submit(domain):
                self.logger.info("Pool is shutting down, no more input will be read")
                break
            self.submitted += 1

        return self.submitted
