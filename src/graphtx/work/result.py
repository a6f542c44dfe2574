"""
Single-pass result streams.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from ..errors import ResultConsumedError, ResultNotSingleError
from ..transports.base import StreamHandle
from ..utils import get_logger

logger = get_logger("work.result")


class Record:
    """
    Immutable row addressed by key or position.
    """

    __slots__ = ("_keys", "_values")

    def __init__(self, keys: Sequence[str], values: Sequence[Any]) -> None:
        if len(keys) != len(values):
            raise ValueError(f"Record has {len(keys)} keys but {len(values)} values")
        self._keys = tuple(keys)
        self._values = tuple(values)

    def __getitem__(self, key: int | str) -> Any:
        if isinstance(key, int):
            return self._values[key]
        try:
            return self._values[self._keys.index(key)]
        except ValueError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except (KeyError, IndexError):
            return default

    def keys(self) -> Tuple[str, ...]:
        return self._keys

    def values(self) -> Tuple[Any, ...]:
        return self._values

    def items(self) -> List[Tuple[str, Any]]:
        return list(zip(self._keys, self._values))

    def data(self, *keys: str) -> Dict[str, Any]:
        if not keys:
            return dict(self.items())
        return {key: self.get(key) for key in keys}

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._keys == other._keys and self._values == other._values

    def __hash__(self) -> int:
        return hash((self._keys, self._values))

    def __repr__(self) -> str:
        fields = " ".join(f"{key}={value!r}" for key, value in self.items())
        return f"<Record {fields}>"


@dataclass(frozen=True)
class ResultSummary:
    query: str
    parameters: Mapping[str, Any]
    database: Optional[str] = None
    query_type: Optional[str] = None
    counters: Mapping[str, int] = field(default_factory=dict)
    result_available_after: Optional[int] = None
    result_consumed_after: Optional[int] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_metadata(
        cls, query: str, parameters: Mapping[str, Any], metadata: Mapping[str, Any]
    ) -> "ResultSummary":
        return cls(
            query=query,
            parameters=dict(parameters),
            database=metadata.get("db"),
            query_type=metadata.get("type"),
            counters=dict(metadata.get("stats") or {}),
            result_available_after=metadata.get("t_first"),
            result_consumed_after=metadata.get("t_last"),
            metadata=dict(metadata),
        )

    @property
    def contains_updates(self) -> bool:
        return any(self.counters.values())


class EagerResult(NamedTuple):
    records: List[Record]
    summary: ResultSummary
    keys: Tuple[str, ...]


class Result:
    """
    Lazily buffered, single-pass stream of records for one query.

    Records leave the buffer as they are read. The stream is tied to its
    transaction: once the transaction ends every read raises
    :class:`ResultConsumedError`.
    """

    def __init__(
        self,
        handle: StreamHandle,
        query: str,
        parameters: Mapping[str, Any],
        *,
        fetch_size: int = 1000,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._handle = handle
        self._query = query
        self._parameters = parameters
        self._keys = tuple(handle.keys)
        self._fetch_size = fetch_size
        self._on_error = on_error
        self._buffer: Deque[Record] = deque()
        self._summary: Optional[ResultSummary] = None
        self._invalid_reason: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def keys(self) -> Tuple[str, ...]:
        return self._keys

    def __iter__(self) -> Iterator[Record]:
        while True:
            self._check_valid()
            if not self._buffer and not self._ensure(1):
                return
            yield self._buffer.popleft()

    def fetch(self, n: int) -> List[Record]:
        if n < 0:
            raise ValueError("fetch() requires a non-negative count")
        self._check_valid()
        self._ensure(n)
        return [self._buffer.popleft() for _ in range(min(n, len(self._buffer)))]

    def peek(self) -> Optional[Record]:
        self._check_valid()
        if not self._ensure(1):
            return None
        return self._buffer[0]

    def single(self, strict: bool = False) -> Optional[Record]:
        """
        Return the only remaining record and exhaust the stream.

        In non-strict mode, an empty stream yields ``None`` and surplus
        records are logged and dropped.
        """

        self._check_valid()
        self._ensure(2)
        count = len(self._buffer)
        first = self._buffer.popleft() if count else None
        self._exhaust()
        if count == 0:
            if strict:
                raise ResultNotSingleError("No records found. Make sure your query returns exactly one record.")
            return None
        if count > 1:
            if strict:
                raise ResultNotSingleError("Expected a result with a single record, but found multiple.")
            logger.warning(
                "Expected a result with a single record, but found multiple; returning the first and discarding the rest.",
                extra={"query": self._query},
            )
        return first

    def consume(self) -> ResultSummary:
        if self._summary is not None:
            return self._summary
        self._check_valid()
        return self._exhaust()

    def data(self, *keys: str) -> List[Dict[str, Any]]:
        return [record.data(*keys) for record in self]

    def value(self, key: int | str = 0, default: Any = None) -> List[Any]:
        values = []
        for record in self:
            try:
                values.append(record[key])
            except (KeyError, IndexError):
                values.append(default)
        return values

    @property
    def exhausted(self) -> bool:
        return not self._buffer and self._handle.exhausted

    # ------------------------------------------------------------------ #
    # Transaction integration
    # ------------------------------------------------------------------ #
    def _discard_remaining(self) -> None:
        """
        Drain the server stream before the owning transaction commits.
        """

        if self._invalid_reason is None and self._summary is None:
            self._exhaust()

    def _invalidate(self, reason: str) -> None:
        if self._invalid_reason is not None:
            return
        self._invalid_reason = reason
        self._buffer.clear()
        if not self._handle.exhausted:
            self._handle.cancel()

    # ------------------------------------------------------------------ #
    def _check_valid(self) -> None:
        if self._invalid_reason is not None:
            raise ResultConsumedError(self._invalid_reason)

    def _ensure(self, n: int) -> bool:
        while len(self._buffer) < n:
            self._check_valid()
            if self._handle.exhausted or not self._pull():
                return len(self._buffer) >= n
        return True

    def _pull(self) -> bool:
        try:
            rows = self._handle.fetch(self._fetch_size)
        except BaseException as exc:
            if self._on_error is not None:
                self._on_error(exc)
            raise
        for row in rows:
            self._buffer.append(Record(self._keys, row))
        return bool(rows)

    def _exhaust(self) -> ResultSummary:
        self._buffer.clear()
        try:
            metadata = self._handle.discard()
        except BaseException as exc:
            if self._on_error is not None:
                self._on_error(exc)
            raise
        summary = ResultSummary.from_metadata(self._query, self._parameters, metadata or {})
        self._summary = summary
        return summary
