import asyncio
import io

import pytest

from homefetch.crawler.dispatcher import Dispatcher, InputReadError


class RecordingPool:
    """Accepts every domain until ``refuse_after`` submissions."""

    def __init__(self, refuse_after=None):
        self.submitted = []
        self.refuse_after = refuse_after

    async def submit(self, domain):
        if self.refuse_after is not None and len(self.submitted) >= self.refuse_after:
            return False
        self.submitted.append(domain)
        return True


class BrokenStream:
    def __init__(self, lines):
        self.lines = list(lines)

    def readline(self):
        if self.lines:
            return self.lines.pop(0)
        raise OSError("Input/output error")


def test_dispatches_each_non_empty_line():
    pool = RecordingPool()
    stream = io.StringIO("example.com\n\n  example.org  \nexample.net\n\n")

    count = asyncio.run(Dispatcher(pool, stream).run())

    assert count == 3
    assert pool.submitted == ["example.com", "example.org", "example.net"]


def test_last_line_without_newline():
    pool = RecordingPool()

    asyncio.run(Dispatcher(pool, io.StringIO("a.example\nb.example")).run())

    assert pool.submitted == ["a.example", "b.example"]


def test_empty_input():
    pool = RecordingPool()

    assert asyncio.run(Dispatcher(pool, io.StringIO("")).run()) == 0
    assert pool.submitted == []


def test_duplicates_are_passed_through():
    pool = RecordingPool()

    asyncio.run(Dispatcher(pool, io.StringIO("example.com\nexample.com\n")).run())

    assert pool.submitted == ["example.com", "example.com"]


def test_stops_when_pool_refuses():
    pool = RecordingPool(refuse_after=2)
    stream = io.StringIO("".join(f"d{i}.example\n" for i in range(10)))

    count = asyncio.run(Dispatcher(pool, stream).run())

    assert count == 2
    assert pool.submitted == ["d0.example", "d1.example"]


def test_read_error_is_fatal():
    pool = RecordingPool()
    dispatcher = Dispatcher(pool, BrokenStream(["ok.example\n"]))

    with pytest.raises(InputReadError, match="Input/output error"):
        asyncio.run(dispatcher.run())

    assert pool.submitted == ["ok.example"]


def test_undecodable_line_does_not_stop_input():
    pool = RecordingPool()
    stream = io.TextIOWrapper(io.BytesIO(b"good.example\nbad\xff.example\nlater.example\n"))

    count = asyncio.run(Dispatcher(pool, stream).run())

    assert count == 3
    assert pool.submitted == ["good.example", "bad\ufffd.example", "later.example"]
