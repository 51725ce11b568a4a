"""
Worker pool that fetches and stores homepages.

A fixed number of asyncio workers pull domains from one shared queue. Each
worker owns its own fetcher. Shutdown is cooperative: a worker notices it only
between jobs, so a fetch in progress always finishes along with its store
write.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .fetcher import HomepageFetcher
from ..storage.store import ArtifactStatus, ShardedStore, StorageError
from ..utils.logger import get_outcome_logger
from ..utils.monitoring import FetchMonitor


class OutcomeKind(Enum):
    """How a job ended."""
    OK = 'ok'
    FAILED = 'failed'
    SKIPPED = 'skipped'


@dataclass
class JobOutcome:
    """Result of processing one domain."""
    sequence: int
    worker_id: int
    domain: str
    kind: OutcomeKind
    duration: float = 0.0
    size: int = 0
    error: Optional[str] = None
    existing: Optional[ArtifactStatus] = None


@dataclass
class PoolStats:
    """Statistics for one run of the pool."""
    start_time: float = field(default_factory=time.time)
    ok: int = 0
    failed: int = 0
    skipped: int = 0
    bytes_stored: int = 0

    @property
    def processed(self) -> int:
        return self.ok + self.failed + self.skipped

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def domains_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.processed / elapsed_minutes if elapsed_minutes > 0 else 0


class WorkerPool:
    """
    Runs a fixed set of workers over a shared job queue.

    ``submit`` returns only once a worker has claimed the domain, so the
    dispatcher blocks whenever every worker is busy. That is the only flow
    control in the system.
    """

    def __init__(self, store: ShardedStore, fetcher_factory: Callable[[], HomepageFetcher],
                 n_workers: int = 50, monitor: Optional[FetchMonitor] = None,
                 on_outcome: Optional[Callable[[JobOutcome], None]] = None):
        if n_workers < 1:
            raise ValueError("n_workers must be at least 1")

        self.store = store
        self.fetcher_factory = fetcher_factory
        self.n_workers = n_workers
        self.monitor = monitor
        self.on_outcome = on_outcome

        self.logger = logging.getLogger(__name__)
        self.outcome_logger = get_outcome_logger(__name__)

        self.stats = PoolStats()
        self.workers: List[asyncio.Task] = []
        self.queue: Optional[asyncio.Queue] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._sequence = itertools.count(1)

    @property
    def is_running(self) -> bool:
        return bool(self.workers) and not self.stopping

    @property
    def stopping(self) -> bool:
        return self._shutdown is not None and self._shutdown.is_set()

    def start(self):
        """Spawn the workers. Must be called from a running event loop."""
        if self.workers:
            self.logger.warning("Worker pool is already running")
            return

        self.queue = asyncio.Queue(maxsize=1)
        self._shutdown = asyncio.Event()
        self.stats = PoolStats()

        for worker_id in range(self.n_workers):
            self.workers.append(asyncio.create_task(self._worker(worker_id)))

        self.logger.info(f"Started {self.n_workers} workers")

    async def submit(self, domain: str) -> bool:
        """
        Hand a domain to the workers, waiting until one of them has claimed it.

        Returns:
            False if shutdown began before a worker claimed the domain
        """
        if self.stopping:
            return False
        if not self.workers:
            raise RuntimeError("Worker pool is not started")

        handoff_task = asyncio.ensure_future(self._handoff(domain))
        stop_task = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({handoff_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (handoff_task, stop_task):
                if not task.done():
                    task.cancel()

        return handoff_task in done and not handoff_task.cancelled()

    async def _handoff(self, domain: str):
        # Workers mark a job done as soon as they claim it, so join() returns on claim.
        await self.queue.put(domain)
        await self.queue.join()

    async def shutdown(self):
        """
        Stop all workers after their current job and wait for them.

        Jobs still sitting in the queue are abandoned.
        """
        if not self.workers:
            return

        self.logger.info("closing..")
        self._shutdown.set()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers.clear()

        abandoned = self.queue.qsize()
        if abandoned:
            self.logger.info(f"Abandoned {abandoned} queued domain(s)")
        self.logger.info(".done")

    async def abort(self):
        """Cancel all workers immediately, including jobs in progress."""
        if not self.workers:
            return

        self.logger.warning("Aborting workers")
        self._shutdown.set()
        for worker in self.workers:
            if not worker.done():
                worker.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers.clear()

    async def _next_job(self) -> Optional[str]:
        """Wait for a domain or for shutdown, whichever comes first."""
        if self.stopping:
            return None

        get_task = asyncio.ensure_future(self.queue.get())
        stop_task = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (get_task, stop_task):
                if not task.done():
                    task.cancel()

        if not get_task.done() or get_task.cancelled():
            return None

        domain = get_task.result()
        self.queue.task_done()
        if self.stopping:
            self.logger.debug(f"Abandoned {domain}: shutdown already requested")
            return None
        return domain

    async def _worker(self, worker_id: int):
        """Worker coroutine: claim, process, record, repeat."""
        fetcher = self.fetcher_factory()
        self.logger.debug(f"Worker {worker_id} started")

        try:
            while True:
                domain = await self._next_job()
                if domain is None:
                    self.logger.info(f"{worker_id}: close received")
                    return

                if self.monitor:
                    self.monitor.worker_busy()
                try:
                    outcome = await self._run_job(fetcher, worker_id, domain)
                finally:
                    if self.monitor:
                        self.monitor.worker_idle()
                    await fetcher.reset()

                self._record(outcome)
        finally:
            await fetcher.close()

    async def _run_job(self, fetcher: HomepageFetcher, worker_id: int, domain: str) -> JobOutcome:
        start_time = time.monotonic()
        try:
            return await self.process_domain(fetcher, worker_id, domain)
        except Exception as e:
            self.logger.exception(f"Worker {worker_id} error on {domain}")
            return self._outcome(worker_id, domain, OutcomeKind.FAILED,
                                 duration=time.monotonic() - start_time,
                                 error=f"Unexpected error: {e}")

    async def process_domain(self, fetcher: HomepageFetcher, worker_id: int,
                             domain: str) -> JobOutcome:
        """
        Fetch and store one domain unless something is already stored for it.

        Storage failures produce a FAILED outcome and leave no error marker,
        so the domain is tried again on the next run.
        """
        start_time = time.monotonic()

        try:
            existing = await asyncio.to_thread(self.store.status, domain)
        except (OSError, StorageError) as e:
            return self._storage_failure(worker_id, domain, start_time, e)

        if existing is not ArtifactStatus.ABSENT:
            return self._outcome(worker_id, domain, OutcomeKind.SKIPPED,
                                 duration=time.monotonic() - start_time, existing=existing)

        result = await fetcher.fetch_domain(domain)

        try:
            if result.ok:
                size = await asyncio.to_thread(self.store.write_success, domain, result.content)
                return self._outcome(worker_id, domain, OutcomeKind.OK,
                                     duration=time.monotonic() - start_time, size=size)

            await asyncio.to_thread(self.store.write_failure, domain, result.error)
        except (OSError, StorageError) as e:
            return self._storage_failure(worker_id, domain, start_time, e)

        return self._outcome(worker_id, domain, OutcomeKind.FAILED,
                             duration=time.monotonic() - start_time, error=result.error)

    def _storage_failure(self, worker_id: int, domain: str, start_time: float,
                         exc: Exception) -> JobOutcome:
        self.logger.error(f"Storage error for {domain}: {exc}")
        return self._outcome(worker_id, domain, OutcomeKind.FAILED,
                             duration=time.monotonic() - start_time,
                             error=f"Storage error: {exc}")

    def _outcome(self, worker_id: int, domain: str, kind: OutcomeKind, **kwargs) -> JobOutcome:
        return JobOutcome(sequence=next(self._sequence), worker_id=worker_id,
                          domain=domain, kind=kind, **kwargs)

    def _record(self, outcome: JobOutcome):
        if outcome.kind is OutcomeKind.OK:
            self.stats.ok += 1
            self.stats.bytes_stored += outcome.size
        elif outcome.kind is OutcomeKind.SKIPPED:
            self.stats.skipped += 1
        else:
            self.stats.failed += 1

        self.outcome_logger.log_outcome(outcome)
        if self.monitor:
            self.monitor.record_outcome(outcome)
        if self.on_outcome:
            self.on_outcome(outcome)

    def log_final_stats(self):
        """Log final run statistics."""
        self.logger.info("=== RUN COMPLETED ===")
        self.logger.info(f"Domains processed: {self.stats.processed}")
        self.logger.info(f"Stored: {self.stats.ok}")
        self.logger.info(f"Failed: {self.stats.failed}")
        self.logger.info(f"Skipped (already present): {self.stats.skipped}")
        self.logger.info(f"Compressed data stored: {self.stats.bytes_stored / 1024 / 1024:.1f} MB")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Average rate: {self.stats.domains_per_minute:.1f} domains/min")
        if self.monitor:
            self.logger.info(f"Metrics summary: {self.monitor.get_summary()}")
