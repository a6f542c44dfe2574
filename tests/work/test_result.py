import logging

import pytest

from graphtx.errors import ResultConsumedError, ResultNotSingleError
from graphtx.work import Record, Result


class ListHandle:
    def __init__(self, rows, keys=("n",)):
        self.keys = keys
        self.rows = list(rows)
        self.fetches = []
        self.cancelled = False
        self._exhausted = not self.rows

    @property
    def exhausted(self):
        return self._exhausted

    def fetch(self, n):
        self.fetches.append(n)
        batch, self.rows = self.rows[:n], self.rows[n:]
        self._exhausted = not self.rows
        return batch

    def discard(self):
        self.rows = []
        self._exhausted = True
        return {"db": "movies", "type": "r", "stats": {}, "t_first": 1, "t_last": 2}

    def cancel(self):
        self.cancelled = True
        self._exhausted = True


def make_result(count, fetch_size=2):
    handle = ListHandle([(i,) for i in range(count)])
    return handle, Result(handle, "RANGE $n", {"n": count}, fetch_size=fetch_size)


def test_record_access():
    record = Record(("name", "age"), ("Alice", 33))
    assert record["name"] == "Alice"
    assert record[1] == 33
    assert record.get("missing", "x") == "x"
    assert record.data() == {"name": "Alice", "age": 33}
    assert record.data("age") == {"age": 33}
    assert list(record) == ["Alice", 33]
    assert "age" in record
    with pytest.raises(KeyError):
        record["missing"]


def test_record_requires_matching_lengths():
    with pytest.raises(ValueError):
        Record(("a", "b"), (1,))


def test_iteration_is_single_pass_and_batched():
    handle, result = make_result(5)
    assert [record["n"] for record in result] == [0, 1, 2, 3, 4]
    assert list(result) == []
    assert handle.fetches == [2, 2, 2]


def test_fetch_returns_at_most_n_records():
    _, result = make_result(3)
    assert [r["n"] for r in result.fetch(2)] == [0, 1]
    assert [r["n"] for r in result.fetch(5)] == [2]
    assert result.fetch(1) == []
    with pytest.raises(ValueError):
        result.fetch(-1)


def test_peek_does_not_consume():
    _, result = make_result(2)
    assert result.peek()["n"] == 0
    assert result.peek()["n"] == 0
    assert [r["n"] for r in result] == [0, 1]
    assert result.peek() is None


@pytest.mark.parametrize("count", [0, 2])
def test_single_strict_requires_exactly_one(count):
    _, result = make_result(count)
    with pytest.raises(ResultNotSingleError):
        result.single(strict=True)


def test_single_strict_with_one_record():
    _, result = make_result(1)
    assert result.single(strict=True)["n"] == 0


def test_single_lenient_returns_none_for_empty():
    _, result = make_result(0)
    assert result.single() is None


def test_single_lenient_warns_and_discards_surplus(caplog):
    caplog.set_level(logging.WARNING, logger="graphtx.work.result")
    handle, result = make_result(5)
    assert result.single()["n"] == 0
    assert any("found multiple" in record.message for record in caplog.records)
    assert handle.rows == []
    assert list(result) == []


def test_consume_is_idempotent():
    _, result = make_result(3)
    result.fetch(1)
    summary = result.consume()
    assert summary is result.consume()
    assert summary.database == "movies"
    assert summary.parameters == {"n": 3}
    assert summary.result_available_after == 1
    assert summary.contains_updates is False
    assert result.exhausted


def test_data_and_value():
    _, result = make_result(3)
    assert result.data() == [{"n": 0}, {"n": 1}, {"n": 2}]
    _, result = make_result(2)
    assert result.value("missing", default=-1) == [-1, -1]


def test_invalidated_result_refuses_reads():
    handle, result = make_result(5)
    result.fetch(1)
    result._invalidate("transaction closed")
    assert handle.cancelled is True
    for read in (lambda: list(result), lambda: result.fetch(1), result.peek, result.single, result.consume):
        with pytest.raises(ResultConsumedError):
            read()


def test_invalidate_after_exhaustion_does_not_cancel():
    handle, result = make_result(1)
    list(result)
    result._invalidate("done")
    assert handle.cancelled is False
