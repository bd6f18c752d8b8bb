"""
Services module for the table engine.

- domain/: Store, router, reconciliation (business logic)
- collaborators.py: Product catalog, sale finalizer, ticket dispatcher
- notifications.py: Redis pub/sub between devices
- locks.py: Per-table locks
- audit.py: Audit log writes
"""
