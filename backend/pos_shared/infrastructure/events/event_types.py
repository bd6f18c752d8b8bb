"""
Event Type Constants.

Defines all event types published on the table notification channels.
"""

from pos_shared.config.settings import settings

# =============================================================================
# Active order events
# =============================================================================

ORDER_REVISION_CHANGED = "ORDER_REVISION_CHANGED"  # Any successful order mutation
ORDER_CLEARED = "ORDER_CLEARED"  # Order finalized or canceled, table back to LIBRE

# =============================================================================
# Table events
# =============================================================================

TABLE_STATE_CHANGED = "TABLE_STATE_CHANGED"  # Reserve, out of service, restore
TABLES_RESET = "TABLES_RESET"  # Operator emergency reset

# =============================================================================
# Kitchen events
# =============================================================================

TICKETS_ROUTED = "TICKETS_ROUTED"  # Line items sent to kitchen and routed to printers

# =============================================================================
# Size limits
# =============================================================================

MAX_EVENT_SIZE = settings.event_max_size_bytes
