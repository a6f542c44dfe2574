import threading
import time
from collections import defaultdict, deque

import pytest

from graphtx.driver import Driver
from graphtx.errors import (
    InvalidTransactionStateError,
    ResultConsumedError,
    ServiceUnavailable,
    is_connection_failure,
)
from graphtx.hooks import HookDispatcher
from graphtx.transports.base import ConnectionConfig


class FakeDatabase:
    """
    In-memory key/value store speaking a tiny command language.

    ``SET``, ``INCREMENT``, ``GET``, ``RANGE`` and ``COUNT`` are recognised
    by the first word of the query. Each transaction works on a private copy
    of the committed state, so rolled back work leaves no trace.
    """

    def __init__(self):
        self.data = {}
        self.version = 0
        self.lock = threading.Lock()
        self.failures = defaultdict(deque)
        self.begins = []
        self.queries = []
        self.commits = 0
        self.rollbacks = 0
        self.unreachable = set()
        self.routing_responses = {}
        self.route_calls = []
        self.block_fetch = False

    def fail_next(self, stage, error, times=1):
        for _ in range(times):
            self.failures[stage].append(error)

    def maybe_fail(self, stage):
        with self.lock:
            queue = self.failures.get(stage)
            error = queue.popleft() if queue else None
        if error is not None:
            raise error

    def apply(self, working):
        with self.lock:
            self.data = dict(working)
            self.version += 1
            self.commits += 1
            return f"bm:{self.version}"


class FakeStream:
    def __init__(self, keys, rows, stats=None, database=None, block=False):
        self.keys = tuple(keys)
        self._rows = deque(rows)
        self._stats = stats or {}
        self._database = database
        self._block = block
        self._exhausted = False
        self.cancelled = threading.Event()
        self.fetch_calls = 0

    @property
    def exhausted(self):
        return self._exhausted

    def fetch(self, n):
        self.fetch_calls += 1
        if self._block:
            self.cancelled.wait(5)
        if self.cancelled.is_set():
            raise ResultConsumedError("Stream was cancelled.")
        if n < 0:
            n = len(self._rows)
        batch = [self._rows.popleft() for _ in range(min(n, len(self._rows)))]
        if not self._rows:
            self._exhausted = True
        return batch

    def discard(self):
        self._rows.clear()
        self._exhausted = True
        return {"db": self._database, "type": "rw" if self._stats else "r", "stats": dict(self._stats)}

    def cancel(self):
        self._exhausted = True
        self.cancelled.set()


class FakeConnection:
    def __init__(self, address, database, created_at):
        self.address = address
        self.created_at = created_at
        self.db = database
        self.working = None
        self.streams = []
        self._closed = False
        self._defunct = False

    @property
    def closed(self):
        return self._closed

    @property
    def defunct(self):
        return self._defunct

    def _check(self, stage):
        try:
            self.db.maybe_fail(stage)
        except Exception as exc:
            if is_connection_failure(exc):
                self._defunct = True
                self.working = None
            raise

    def begin(self, *, database, mode, bookmarks, metadata, timeout, impersonated_user):
        if self.working is not None:
            raise InvalidTransactionStateError("transaction already open")
        self._check("begin")
        self.db.begins.append(
            {
                "address": self.address,
                "database": database,
                "mode": mode,
                "bookmarks": list(bookmarks),
                "metadata": metadata,
                "timeout": timeout,
                "impersonated_user": impersonated_user,
            }
        )
        with self.db.lock:
            self.working = dict(self.db.data)

    def run(self, query, parameters):
        if self.working is None:
            raise InvalidTransactionStateError("no open transaction")
        self._check("run")
        self.db.queries.append((query, dict(parameters)))
        command = query.split()[0].upper()
        keys, rows, stats = ("value",), [], {}
        if command == "SET":
            self.working[parameters["key"]] = parameters["value"]
            stats = {"properties_set": 1}
        elif command == "INCREMENT":
            value = self.working.get(parameters["key"], 0) + 1
            self.working[parameters["key"]] = value
            rows, stats = [(value,)], {"properties_set": 1}
        elif command == "GET":
            rows = [(self.working.get(parameters["key"]),)]
        elif command == "RANGE":
            keys = ("n",)
            rows = [(i,) for i in range(parameters["n"])]
        elif command == "COUNT":
            keys = ("count",)
            rows = [(len(self.working),)]
        stream = FakeStream(keys, rows, stats, database, block=self.db.block_fetch)
        stream.fetch = self._guarded("fetch", stream.fetch)
        stream.discard = self._guarded("discard", stream.discard)
        self.streams.append(stream)
        return stream

    def _guarded(self, stage, method):
        def wrapper(*args):
            self._check(stage)
            return method(*args)

        return wrapper

    def commit(self):
        if self.working is None:
            raise InvalidTransactionStateError("no open transaction")
        working, self.working = self.working, None
        self._check("commit")
        return self.db.apply(working)

    def rollback(self):
        if self.working is None:
            raise InvalidTransactionStateError("no open transaction")
        self.working = None
        self.db.rollbacks += 1
        self._check("rollback")

    def reset(self):
        self.working = None

    def route(self, database, bookmarks):
        self._check("route")
        self.db.route_calls.append((self.address, database, list(bookmarks)))
        response = self.db.routing_responses.get(database) or self.db.routing_responses.get(None)
        if response is None:
            address = str(self.address)
            response = {
                "ttl": 300,
                "servers": [
                    {"role": "ROUTE", "addresses": [address]},
                    {"role": "READ", "addresses": [address]},
                    {"role": "WRITE", "addresses": [address]},
                ],
            }
        return dict(response, db=database)

    def close(self):
        self._closed = True


class FakeTransport:
    def __init__(self, database, clock=time.monotonic):
        self.db = database
        self.clock = clock
        self.opened = []

    def open(self, address, config):
        if address in self.db.unreachable:
            raise ServiceUnavailable(f"{address} is unreachable")
        self.db.maybe_fail("open")
        connection = FakeConnection(address, self.db, self.clock())
        self.opened.append(connection)
        return connection


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def transport(database):
    return FakeTransport(database)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_driver(transport, sleeps):
    drivers = []

    def factory(uri="bolt://localhost:7687", *, hooks=None, clock=time.monotonic, **options):
        config = ConnectionConfig.from_dsn(uri, **options)
        created = Driver(config, transport, hooks=hooks or HookDispatcher(), clock=clock, sleep=sleeps.append)
        drivers.append(created)
        return created

    yield factory
    for created in drivers:
        created.close()


@pytest.fixture
def driver(make_driver):
    return make_driver()
