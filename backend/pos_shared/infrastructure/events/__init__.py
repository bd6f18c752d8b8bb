"""
Event System for table notifications via Redis pub/sub.

This package provides:
- Event schema and validation
- Redis connection pool management
- Event publishing with retry and circuit breaker
- Channel naming conventions

Modules:
- circuit_breaker.py: Circuit breaker pattern for resilience
- event_types.py: Event type constants
- event_schema.py: Event dataclass with validation
- channels.py: Channel naming functions
- redis_pool.py: Connection pool management
- publisher.py: Core publish_event with retry
"""

# =============================================================================
# Circuit Breaker
# =============================================================================

from .circuit_breaker import (
    CircuitState,
    EventCircuitBreaker,
    get_event_circuit_breaker,
    calculate_retry_delay_with_jitter,
)

# =============================================================================
# Event Types
# =============================================================================

from .event_types import (
    ORDER_REVISION_CHANGED,
    ORDER_CLEARED,
    TABLE_STATE_CHANGED,
    TABLES_RESET,
    TICKETS_ROUTED,
    MAX_EVENT_SIZE,
)

# =============================================================================
# Schema, channels, transport
# =============================================================================

from .event_schema import Event
from .channels import (
    TABLE_ORDERS_PATTERN,
    FLOOR_CHANNEL,
    channel_table_orders,
    channel_printer,
)
from .redis_pool import get_redis_client, close_redis_pool
from .publisher import publish_event

__all__ = [
    # Circuit breaker
    "CircuitState",
    "EventCircuitBreaker",
    "get_event_circuit_breaker",
    "calculate_retry_delay_with_jitter",
    # Event types
    "ORDER_REVISION_CHANGED",
    "ORDER_CLEARED",
    "TABLE_STATE_CHANGED",
    "TABLES_RESET",
    "TICKETS_ROUTED",
    "MAX_EVENT_SIZE",
    # Schema
    "Event",
    # Channels
    "TABLE_ORDERS_PATTERN",
    "FLOOR_CHANNEL",
    "channel_table_orders",
    "channel_printer",
    # Transport
    "get_redis_client",
    "close_redis_pool",
    "publish_event",
]
