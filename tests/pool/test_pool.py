import threading

import pytest

from graphtx.errors import DriverClosedError, PoolTimeoutError, ServiceUnavailable
from graphtx.pool import ConnectionPool
from graphtx.transports.base import Address, ConnectionConfig

ADDRESS = Address("localhost", 7687)


def make_pool(transport, **options):
    options.setdefault("connection_acquisition_timeout", 0.05)
    config = ConnectionConfig.from_dsn("bolt://localhost:7687", **options)
    return ConnectionPool(transport, config)


def test_acquire_reuses_released_connection(transport):
    pool = make_pool(transport)
    first = pool.acquire(ADDRESS)
    assert pool.in_use_count(ADDRESS) == 1
    pool.release(first)
    assert pool.idle_count(ADDRESS) == 1

    second = pool.acquire(ADDRESS)
    assert second is first
    assert len(transport.opened) == 1


def test_acquire_times_out_at_capacity(transport):
    pool = make_pool(transport, max_connection_pool_size=1)
    pool.acquire(ADDRESS)
    with pytest.raises(PoolTimeoutError):
        pool.acquire(ADDRESS)
    assert pool.in_use_count(ADDRESS) == 1


def test_release_wakes_blocked_acquirer(transport):
    pool = make_pool(transport, max_connection_pool_size=1, connection_acquisition_timeout=5)
    held = pool.acquire(ADDRESS)
    acquired = []

    def waiter():
        acquired.append(pool.acquire(ADDRESS))

    thread = threading.Thread(target=waiter)
    thread.start()
    pool.release(held)
    thread.join(timeout=5)

    assert acquired == [held]


def test_defunct_and_discarded_connections_are_closed(transport):
    pool = make_pool(transport)
    broken = pool.acquire(ADDRESS)
    broken._defunct = True
    pool.release(broken)
    assert broken.closed is True
    assert pool.idle_count(ADDRESS) == 0

    healthy = pool.acquire(ADDRESS)
    pool.release(healthy, discard=True)
    assert healthy.closed is True


def test_expired_connections_are_not_reused(transport):
    now = [0.0]
    transport.clock = lambda: now[0]
    config = ConnectionConfig.from_dsn("bolt://localhost:7687", max_connection_lifetime=10)
    pool = ConnectionPool(transport, config, clock=lambda: now[0])

    first = pool.acquire(ADDRESS)
    pool.release(first)
    now[0] = 11.0
    second = pool.acquire(ADDRESS)

    assert second is not first
    assert first.closed is True


def test_open_failure_frees_slot(transport, database):
    pool = make_pool(transport, max_connection_pool_size=1)
    database.fail_next("open", OSError("connection refused"))
    with pytest.raises(ServiceUnavailable) as excinfo:
        pool.acquire(ADDRESS)
    assert isinstance(excinfo.value.__cause__, OSError)

    connection = pool.acquire(ADDRESS)
    assert connection is transport.opened[0]


def test_purge_closes_idle_and_marks_in_use(transport):
    pool = make_pool(transport)
    idle = pool.acquire(ADDRESS)
    busy = pool.acquire(ADDRESS)
    pool.release(idle)

    pool.purge(ADDRESS)
    assert idle.closed is True
    assert busy.closed is False

    pool.release(busy)
    assert busy.closed is True
    assert pool.idle_count(ADDRESS) == 0


def test_close_is_idempotent_and_rejects_acquire(transport):
    pool = make_pool(transport)
    connection = pool.acquire(ADDRESS)
    pool.release(connection)

    pool.close()
    pool.close()

    assert pool.closed is True
    assert connection.closed is True
    with pytest.raises(DriverClosedError):
        pool.acquire(ADDRESS)


def test_release_after_close_closes_connection(transport):
    pool = make_pool(transport)
    connection = pool.acquire(ADDRESS)
    pool.close()
    pool.release(connection)
    assert connection.closed is True


def test_release_of_unknown_connection_is_ignored(transport, caplog):
    pool = make_pool(transport)
    stranger = transport.open(ADDRESS, pool.config)
    pool.release(stranger)
    assert stranger.closed is False
    assert any("unknown connection" in record.message for record in caplog.records)
