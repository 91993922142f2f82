from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, Iterable, List, NamedTuple, Type


logger = logging.getLogger(__name__)

Handler = Callable[[object], None]


class _Subscription(NamedTuple):
    priority: int
    order: int
    handler: Handler


class EventBus:
    """Synchronous in-process dispatcher for roll lifecycle events.

    Handlers run lowest priority first, ties in subscription order. A failing
    handler is logged and skipped so later handlers and the publisher carry on.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[Type[object], List[_Subscription]] = defaultdict(list)
        self._order = 0
        self._errors: List[Exception] = []
        self._depth = 0

    def subscribe(self, event_type: Type[object], handler: Handler, *, priority: int = 100) -> None:
        rows = self._subscribers[event_type]
        rows.append(_Subscription(int(priority), self._order, handler))
        rows.sort(key=lambda row: (row.priority, row.order))
        self._order += 1

    def unsubscribe(self, event_type: Type[object], handler: Handler) -> bool:
        rows = self._subscribers.get(event_type, [])
        kept = [row for row in rows if row.handler is not handler]
        self._subscribers[event_type] = kept
        return len(kept) != len(rows)

    def publish(self, event: object) -> None:
        self.publish_all((event,))

    def publish_all(self, events: Iterable[object]) -> None:
        # Events published from inside a handler add to the outer publish's errors.
        if self._depth == 0:
            self._errors = []
        self._depth += 1
        try:
            for event in events:
                self._dispatch(event)
        finally:
            self._depth -= 1

    def last_publish_errors(self) -> List[Exception]:
        return list(self._errors)

    def _dispatch(self, event: object) -> None:
        event_type = type(event)
        for row in list(self._subscribers.get(event_type, ())):
            try:
                row.handler(event)
            except Exception as exc:
                self._errors.append(exc)
                logger.exception(
                    "Roll event handler failed",
                    extra={
                        "event_type": event_type.__name__,
                        "handler": getattr(row.handler, "__qualname__", repr(row.handler)),
                        "priority": row.priority,
                    },
                )
