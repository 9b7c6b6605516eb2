from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator

from .models import ChangeEvent
from .storage import get_pipeline_counts, init_db
from .utils import log_event

Subscriber = Callable[[ChangeEvent], None]

ENTITIES = ("source", "article", "queue_job", "story", "asset_export")


class ReconciliationBus:
    """Coalescing change-notification fan-out.

    Events are keyed by ``(entity, entity_id)``; a burst of changes to the
    same entity produces one delivery carrying the latest action. Delivery
    happens on ``flush()``, or on a timer thread when ``debounce_seconds`` is
    positive. The bus never holds authoritative state.
    """

    def __init__(self, debounce_seconds: float = 0.0, logger: logging.Logger | None = None) -> None:
        self._debounce_seconds = debounce_seconds
        self._logger = logger or logging.getLogger("storydesk.bus")
        self._lock = threading.Lock()
        self._pending: OrderedDict[tuple[str, str], ChangeEvent] = OrderedDict()
        self._subscribers: list[tuple[Subscriber, frozenset[str] | None]] = []
        self._timer: threading.Timer | None = None

    def subscribe(
        self, callback: Subscriber, entities: Iterable[str] | None = None
    ) -> Callable[[], None]:
        entry = (callback, frozenset(entities) if entities else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(
        self, entity: str, entity_id: str, action: str, source_id: str | None = None
    ) -> None:
        if entity not in ENTITIES:
            raise ValueError(f"unknown entity: {entity}")
        event = ChangeEvent(entity=entity, entity_id=entity_id, action=action, source_id=source_id)
        key = (entity, entity_id)
        with self._lock:
            if key in self._pending:
                previous = self._pending.pop(key)
                if event.source_id is None and previous.source_id is not None:
                    event = ChangeEvent(entity, entity_id, action, previous.source_id)
            self._pending[key] = event
            if self._debounce_seconds > 0 and self._timer is None:
                self._timer = threading.Timer(self._debounce_seconds, self._timer_flush)
                self._timer.daemon = True
                self._timer.start()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self) -> int:
        with self._lock:
            events = list(self._pending.values())
            self._pending.clear()
            subscribers = list(self._subscribers)
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        delivered = 0
        for event in events:
            for callback, entities in subscribers:
                if entities is not None and event.entity not in entities:
                    continue
                try:
                    callback(event)
                    delivered += 1
                except Exception as exc:  # noqa: BLE001
                    log_event(
                        self._logger,
                        logging.ERROR,
                        "bus_subscriber_error",
                        entity=event.entity,
                        entity_id=event.entity_id,
                        error=str(exc),
                    )
        return delivered

    def _timer_flush(self) -> None:
        with self._lock:
            self._timer = None
        self.flush()

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


def notify(
    bus: ReconciliationBus | None,
    entity: str,
    entity_id: str,
    action: str,
    source_id: str | None = None,
) -> None:
    if bus is None:
        return
    try:
        bus.publish(entity, entity_id, action, source_id=source_id)
    except Exception as exc:  # noqa: BLE001
        log_event(
            logging.getLogger("storydesk.bus"),
            logging.WARNING,
            "bus_publish_failed",
            entity=entity,
            entity_id=entity_id,
            error=str(exc),
        )


@contextmanager
def _observer_conn(
    conn: Any, connect: Callable[[], Any] | None, owner: int
) -> Iterator[Any]:
    """Yield the shared connection on its owning thread, a private one elsewhere.

    Timer-driven flushes must not join a transaction the owning thread has open.
    """
    if connect is None or threading.get_ident() == owner:
        yield conn
        return
    private = connect()
    try:
        yield private
    finally:
        private.close()


class SourceHealthObserver:
    """Re-scores a source whenever one of its articles or the source changes."""

    def __init__(
        self, conn: Any, config: Any, connect: Callable[[], Any] | None = None
    ) -> None:
        self._conn = conn
        self._config = config
        self._connect = connect
        self._owner = threading.get_ident()
        self.refreshed: list[str] = []

    def __call__(self, event: ChangeEvent) -> None:
        from .services.sources_service import refresh_source_health

        source_id = event.entity_id if event.entity == "source" else event.source_id
        if not source_id:
            return
        with _observer_conn(self._conn, self._connect, self._owner) as conn:
            refresh_source_health(conn, self._config, source_id)
        self.refreshed.append(source_id)


class PipelineCountsObserver:
    """Keeps the aggregate status counts shown as panel badges current."""

    def __init__(self, conn: Any, connect: Callable[[], Any] | None = None) -> None:
        self._conn = conn
        self._connect = connect
        self._owner = threading.get_ident()
        self.counts: dict[str, dict[str, int]] = get_pipeline_counts(conn)
        self.refreshes = 0

    def __call__(self, event: ChangeEvent) -> None:
        with _observer_conn(self._conn, self._connect, self._owner) as conn:
            self.counts = get_pipeline_counts(conn)
        self.refreshes += 1


def build_bus(conn: Any, config: Any) -> ReconciliationBus:
    bus = ReconciliationBus(debounce_seconds=config.reconciliation.debounce_seconds)

    def connect() -> Any:
        return init_db(config.paths.state_db)

    bus.subscribe(SourceHealthObserver(conn, config, connect))
    bus.subscribe(PipelineCountsObserver(conn, connect))
    return bus
