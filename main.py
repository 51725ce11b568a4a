#!/usr/bin/env python3
"""
Main entry point for the homepage fetcher.

Reads one domain per line from stdin, fetches http://<domain> once and stores
the compressed body (or the error) under the output root.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, TextIO

from homefetch import __version__
from homefetch.crawler.dispatcher import Dispatcher, InputReadError
from homefetch.crawler.fetcher import HomepageFetcher
from homefetch.crawler.pool import WorkerPool
from homefetch.storage.store import ShardedStore, StorageError
from homefetch.utils.config import Config, ConfigError, load_config, validate_config
from homefetch.utils.logger import log_system_info, setup_logging
from homefetch.utils.monitoring import initialize_monitoring


EXIT_OK = 0
EXIT_FAILURE = 1


class FetcherApp:
    """Main application class for the homepage fetcher."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stdin
        self.pool: Optional[WorkerPool] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None
        self._signals_installed = []

    def setup_signal_handlers(self):
        """Turn the first SIGINT/SIGTERM into a graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signal.Signals(signum).name}, initiating shutdown...")
            # A second interrupt falls through to the default handler.
            self.remove_signal_handlers()
            self.request_shutdown()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread.
                continue
            self._signals_installed.append(signum)

    def remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in self._signals_installed:
            loop.remove_signal_handler(signum)
        self._signals_installed = []

    def request_shutdown(self):
        """Ask the run to drain the workers and stop. Safe to call more than once."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def build_fetcher_factory(self, config: Config):
        fetcher_config = config.fetcher

        def factory() -> HomepageFetcher:
            return HomepageFetcher(
                user_agent=fetcher_config.user_agent,
                request_timeout=fetcher_config.request_timeout,
                connect_timeout=fetcher_config.connect_timeout,
                fail_on_http_error=fetcher_config.fail_on_http_error,
                max_body_bytes=fetcher_config.max_body_bytes
            )

        return factory

    async def run(self, config: Config) -> int:
        """Run the fetcher until the input ends or a shutdown is requested."""
        self._shutdown_event = asyncio.Event()
        self.setup_signal_handlers()

        try:
            self.logger.info("=== HOMEPAGE FETCHER STARTING ===")
            self.logger.info(f"Output root: {config.storage.root}")
            self.logger.info(f"User agent: {config.fetcher.user_agent}")
            self.logger.info(f"Workers: {config.pool.n_workers}")

            store = ShardedStore(
                config.storage.root,
                dir_mode=config.storage.dir_mode,
                file_mode=config.storage.file_mode,
                compresslevel=config.storage.compresslevel,
                fsync=config.storage.fsync
            )
            store.initialize()

            monitor = initialize_monitoring(
                config.monitoring.metrics_enabled,
                config.monitoring.prometheus_port
            )
            monitor.metrics.start_server()

            self.pool = WorkerPool(
                store,
                self.build_fetcher_factory(config),
                n_workers=config.pool.n_workers,
                monitor=monitor
            )
            self.pool.start()

            dispatch_task = asyncio.create_task(Dispatcher(self.pool, self.stream).run())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            # Wait for either the input to end or a shutdown signal
            done, pending = await asyncio.wait(
                [dispatch_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            if dispatch_task in done and not dispatch_task.cancelled():
                exc = dispatch_task.exception()
                if isinstance(exc, InputReadError):
                    self.logger.critical(f"{exc}; stopping without draining workers")
                    await self.pool.abort()
                    return EXIT_FAILURE
                if exc is not None:
                    raise exc

            await self.pool.shutdown()
            self.pool.log_final_stats()

        except (StorageError, OSError) as e:
            self.logger.error(f"Fatal error: {e}")
            return EXIT_FAILURE

        finally:
            if self.pool:
                await self.pool.abort()
            self.remove_signal_handlers()
            self.logger.info("=== HOMEPAGE FETCHER FINISHED ===")

        return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fetch the homepage of every domain read from stdin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  homefetch < domains.txt                      # Store into ./out with 50 workers
  homefetch --root /data/pages --n-workers 200 < domains.txt
  homefetch --config homefetch.yaml < domains.txt
        """
    )

    parser.add_argument(
        '--config',
        help='Path to a YAML configuration file (optional)'
    )

    parser.add_argument(
        '--root',
        help='Root output directory (default: ./out)'
    )

    parser.add_argument(
        '--ua', '--user-agent',
        dest='user_agent',
        help='User agent sent with every request (default: "crowley bot 1.0")'
    )

    parser.add_argument(
        '--n-workers',
        type=int,
        help='Number of workers (default: 50)'
    )

    parser.add_argument(
        '--log-level',
        help='Log level (default: INFO)'
    )

    parser.add_argument(
        '--json-logs',
        action='store_true',
        default=None,
        help='Write logs as JSON lines'
    )

    parser.add_argument(
        '--metrics-port',
        type=int,
        help='Serve Prometheus metrics on this port'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'homefetch {__version__}'
    )

    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command-line flags take precedence over the configuration file."""
    if args.root is not None:
        config.storage.root = args.root
    if args.user_agent is not None:
        config.fetcher.user_agent = args.user_agent
    if args.n_workers is not None:
        config.pool.n_workers = args.n_workers
    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.json_logs:
        config.logging.json = True
    if args.metrics_port is not None:
        config.monitoring.metrics_enabled = True
        config.monitoring.prometheus_port = args.metrics_port

    validate_config(config)
    return config


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(load_config(args.config), args)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    setup_logging(config.logging)
    log_system_info()

    app = FetcherApp()
    try:
        return asyncio.run(app.run(config))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as e:
        logging.getLogger(__name__).critical(f"Fatal error: {e}", exc_info=True)
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
