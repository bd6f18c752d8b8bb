"""
Infrastructure module: Database and Redis/events.

Provides:
- Database engine, sessions and transactions (db.py)
- Redis pub/sub notifications (events/)
"""
