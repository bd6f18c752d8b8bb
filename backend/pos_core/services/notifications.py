"""
Cross-device notifications over Redis pub/sub.

- OrderChangeNotifier: publishes {table_id, revision} after each mutation.
- RedisTicketDispatcher: publishes routed tickets to the print agents.
- OrderChangeSubscriber: listens to every table channel and the floor
  channel and hands changes and resets to the reconciliation service.

Publishing is best-effort: failures are logged and never raised to the
caller, since the snapshot is already durable.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from typing import Any

import redis

from pos_shared.config.constants import TableState
from pos_shared.config.logging import get_logger
from pos_shared.config.settings import settings
from pos_shared.infrastructure.events import (
    FLOOR_CHANNEL,
    ORDER_CLEARED,
    ORDER_REVISION_CHANGED,
    TABLE_ORDERS_PATTERN,
    TABLE_STATE_CHANGED,
    TABLES_RESET,
    TICKETS_ROUTED,
    Event,
    channel_printer,
    channel_table_orders,
    get_redis_client,
    publish_event,
)
from pos_core.schemas import RoutingResult

logger = get_logger(__name__)

# Events that may leave another process with a stale copy of an order
ORDER_CHANGE_EVENTS = frozenset({ORDER_REVISION_CHANGED, ORDER_CLEARED, TABLE_STATE_CHANGED})


def _safe_publish(
    redis_factory: Callable[[], redis.Redis],
    channel: str,
    event: Event,
) -> bool:
    """Publish and log on failure. Returns True if published."""
    try:
        publish_event(redis_factory(), channel, event)
        return True
    except (redis.RedisError, ValueError) as e:
        logger.warning(
            "Notification not delivered",
            channel=channel,
            event_type=event.type,
            table_id=event.table_id,
            error=str(e),
        )
        return False


class OrderChangeNotifier:
    """Publishes table and order changes to other devices."""

    def __init__(
        self,
        redis_factory: Callable[[], redis.Redis] = get_redis_client,
        enabled: bool | None = None,
    ):
        self._redis_factory = redis_factory
        self._enabled = settings.notifications_enabled if enabled is None else enabled

    def notify_revision(
        self,
        table_id: int,
        revision: int,
        state: TableState,
        origin: str | None = None,
    ) -> bool:
        """An order was created or mutated."""
        if not self._enabled:
            return False
        event = Event(
            type=ORDER_REVISION_CHANGED,
            table_id=table_id,
            revision=revision,
            origin=origin,
            entity={"state": state.value},
        )
        return _safe_publish(self._redis_factory, channel_table_orders(table_id), event)

    def notify_cleared(self, table_id: int, state: TableState, origin: str | None = None) -> bool:
        """The order of a table was finalized, canceled or transferred away."""
        if not self._enabled:
            return False
        event = Event(
            type=ORDER_CLEARED,
            table_id=table_id,
            origin=origin,
            entity={"state": state.value},
        )
        return _safe_publish(self._redis_factory, channel_table_orders(table_id), event)

    def notify_state(self, table_id: int, state: TableState, origin: str | None = None) -> bool:
        """A table changed state without an order (reserve, out of service)."""
        if not self._enabled:
            return False
        event = Event(
            type=TABLE_STATE_CHANGED,
            table_id=table_id,
            origin=origin,
            entity={"state": state.value},
        )
        return _safe_publish(self._redis_factory, channel_table_orders(table_id), event)

    def notify_reset(self, operator: str, origin: str | None = None) -> bool:
        """Every table was reset by an operator."""
        if not self._enabled:
            return False
        event = Event(type=TABLES_RESET, origin=origin, entity={"operator": operator})
        return _safe_publish(self._redis_factory, FLOOR_CHANNEL, event)


class RedisTicketDispatcher:
    """Publishes each routed ticket on the channel of its printer."""

    def __init__(self, redis_factory: Callable[[], redis.Redis] = get_redis_client):
        self._redis_factory = redis_factory

    def dispatch(self, routing: RoutingResult) -> None:
        for printer_id, ticket in routing.tickets.items():
            event = Event(
                type=TICKETS_ROUTED,
                table_id=ticket.table_id,
                entity=ticket.model_dump(mode="json"),
            )
            if not _safe_publish(self._redis_factory, channel_printer(printer_id), event):
                logger.error(
                    "Kitchen ticket not delivered",
                    printer_id=printer_id,
                    table_id=ticket.table_id,
                    line_ids=[item.line_id for item in ticket.items],
                )


class OrderChangeSubscriber:
    """
    Listens on every table channel and the floor channel.

    ``on_change`` receives (table_id, revision, origin); revision is None
    when the table no longer has an order. ``on_reset`` receives the origin
    of a floor-wide reset.
    """

    def __init__(
        self,
        on_change: Callable[[int, int | None, str | None], Any],
        redis_factory: Callable[[], redis.Redis] = get_redis_client,
        poll_timeout: float = 1.0,
        on_reset: Callable[[str | None], Any] | None = None,
    ):
        self._on_change = on_change
        self._on_reset = on_reset
        self._redis_factory = redis_factory
        self._poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def handle_message(self, msg: dict | None) -> bool:
        """Process one pub/sub message. Returns True if it was forwarded."""
        if msg is None or msg.get("type") not in ("message", "pmessage"):
            return False

        try:
            event = Event.from_json(msg["data"])
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(
                "Invalid table notification",
                channel=msg.get("channel"),
                error=str(e),
            )
            return False

        if event.type == TABLES_RESET:
            if self._on_reset is None:
                return False
            handler, args = self._on_reset, (event.origin,)
        elif event.type in ORDER_CHANGE_EVENTS and event.table_id is not None:
            handler, args = self._on_change, (event.table_id, event.revision, event.origin)
        else:
            return False

        try:
            handler(*args)
        except Exception as e:
            # Listener must survive a bad table; reconciliation retries on the next change
            logger.error(
                "Error handling table notification",
                event_type=event.type,
                table_id=event.table_id,
                error=str(e),
                exc_info=True,
            )
            return False
        return True

    def run(self) -> None:
        """Blocking listen loop; returns after stop()."""
        pubsub = self._redis_factory().pubsub(ignore_subscribe_messages=True)
        pubsub.psubscribe(TABLE_ORDERS_PATTERN)
        pubsub.subscribe(FLOOR_CHANNEL)
        logger.info(
            "Table notification subscriber started",
            pattern=TABLE_ORDERS_PATTERN,
            channel=FLOOR_CHANNEL,
        )
        try:
            while not self._stop.is_set():
                self.handle_message(pubsub.get_message(timeout=self._poll_timeout))
        finally:
            pubsub.punsubscribe(TABLE_ORDERS_PATTERN)
            pubsub.unsubscribe(FLOOR_CHANNEL)
            pubsub.close()
            logger.info("Table notification subscriber stopped")

    def start(self) -> threading.Thread:
        """Run the listen loop in a daemon thread."""
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="table-notifications", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
