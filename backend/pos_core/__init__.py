"""
Table session & kitchen-ticket routing engine.

- pos_core.models: SQLAlchemy models (tables, printers, snapshots, audit)
- pos_core.repositories: Data access
- pos_core.schemas: Pydantic outputs
- pos_core.services: Domain services and collaborators
"""
