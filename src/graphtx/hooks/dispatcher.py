"""
Hook dispatcher coordinating transaction lifecycle events.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

HookHandler = Callable[..., None]

TRANSACTION_BEGUN = "transaction_begun"
TRANSACTION_COMMITTED = "transaction_committed"
TRANSACTION_ROLLED_BACK = "transaction_rolled_back"
TRANSACTION_RETRY = "transaction_retry"


@dataclass(frozen=True)
class HookEvent:
    name: str
    database: Optional[str]


class HookDispatcher:
    """
    Maintains global and per-database hook handlers.
    """

    def __init__(self) -> None:
        self._global_handlers: Dict[str, List[HookHandler]] = defaultdict(list)
        self._database_handlers: Dict[str, Dict[str, List[HookHandler]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._lock = RLock()

    def register(self, event: str, handler: HookHandler, *, database: Optional[str] = None) -> None:
        with self._lock:
            if database:
                self._database_handlers[database][event].append(handler)
            else:
                self._global_handlers[event].append(handler)

    def unregister(self, event: str, handler: HookHandler, *, database: Optional[str] = None) -> None:
        with self._lock:
            if database:
                handlers = self._database_handlers.get(database, {}).get(event, [])
            else:
                handlers = self._global_handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

    def fire(self, event: str, database: Optional[str], **context: Any) -> None:
        with self._lock:
            handlers = list(self._global_handlers.get(event, []))
            if database:
                handlers.extend(self._database_handlers.get(database, {}).get(event, []))
        hook_event = HookEvent(event, database)
        for handler in handlers:
            handler(hook_event, **context)

    def clear(self) -> None:
        with self._lock:
            self._global_handlers.clear()
            self._database_handlers.clear()


hooks = HookDispatcher()
