"""
Bookmarks used to chain transactions causally across sessions.
"""

from __future__ import annotations

from threading import RLock
from typing import Callable, Iterable, Iterator, Optional

from .utils import get_logger


class Bookmarks:
    """
    Immutable set of opaque bookmark tokens.

    Combining two sets never drops a token; every operation returns a new
    instance.
    """

    __slots__ = ("_raw_values",)

    def __init__(self) -> None:
        self._raw_values: frozenset[str] = frozenset()

    @classmethod
    def from_raw_values(cls, values: Iterable[str]) -> "Bookmarks":
        tokens = set()
        for value in values:
            if not isinstance(value, str):
                raise TypeError(f"Bookmark values must be str, got {type(value).__name__}")
            if value:
                tokens.add(value)
        bookmarks = cls()
        bookmarks._raw_values = frozenset(tokens)
        return bookmarks

    @property
    def raw_values(self) -> frozenset[str]:
        return self._raw_values

    def merge(self, other: "Bookmarks") -> "Bookmarks":
        if not isinstance(other, Bookmarks):
            raise TypeError(f"Cannot merge Bookmarks with {type(other).__name__}")
        if other._raw_values <= self._raw_values:
            return self
        return Bookmarks.from_raw_values(self._raw_values | other._raw_values)

    def __add__(self, other: object) -> "Bookmarks":
        if not isinstance(other, Bookmarks):
            return NotImplemented
        return self.merge(other)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._raw_values))

    def __len__(self) -> int:
        return len(self._raw_values)

    def __bool__(self) -> bool:
        return bool(self._raw_values)

    def __contains__(self, token: object) -> bool:
        return token in self._raw_values

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bookmarks):
            return NotImplemented
        return self._raw_values == other._raw_values

    def __hash__(self) -> int:
        return hash(self._raw_values)

    def __repr__(self) -> str:
        return f"<Bookmarks {sorted(self._raw_values)!r}>"


BookmarksConsumer = Callable[[Bookmarks], None]


class BookmarkManager:
    """
    Thread-safe bookmark holder shared between sessions.

    Each session that uses the manager seeds its transactions with the
    manager's bookmarks and publishes its commits back to it.
    """

    def __init__(
        self,
        initial_bookmarks: Optional[Bookmarks | Iterable[str]] = None,
        *,
        bookmarks_consumer: Optional[BookmarksConsumer] = None,
    ) -> None:
        if initial_bookmarks is None:
            initial_bookmarks = Bookmarks()
        elif not isinstance(initial_bookmarks, Bookmarks):
            initial_bookmarks = Bookmarks.from_raw_values(initial_bookmarks)
        self._bookmarks = initial_bookmarks
        self._consumer = bookmarks_consumer
        self._lock = RLock()
        self.logger = get_logger("bookmarks")

    def get_bookmarks(self) -> Bookmarks:
        with self._lock:
            return self._bookmarks

    def update_bookmarks(self, new_bookmarks: Bookmarks) -> Bookmarks:
        with self._lock:
            self._bookmarks = self._bookmarks + new_bookmarks
            current = self._bookmarks
        self.logger.debug("Bookmark manager now holds %d bookmark(s)", len(current))
        if self._consumer is not None:
            self._consumer(current)
        return current
