"""
Background job processing.

This package provides a database-backed job queue with:
- Atomic claiming by priority, schedule and age
- Registry-based pluggable handlers
- Bounded retries with exponential backoff
- Heartbeat liveness and reclamation of jobs held by dead workers
"""
