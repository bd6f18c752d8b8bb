"""
Shared infrastructure for the table engine.

STRUCTURE:
- pos_shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging
  - constants.py: TableState, TableEvent, PrinterCategory, Limits

- pos_shared.infrastructure: Database and messaging
  - db.py: SQLAlchemy engine, session_scope(), safe_commit()
  - events/: Redis pub/sub, event publishing

- pos_shared.utils: Utilities
  - exceptions.py: HTTP exceptions with auto-logging

IMPORT EXAMPLES:
    from pos_shared.infrastructure.db import session_scope
    from pos_shared.config.settings import settings
    from pos_shared.config.constants import TableState, TableEvent
    from pos_shared.utils.exceptions import NotFoundError, RevisionConflictError
"""
