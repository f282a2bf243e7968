# buildnotify/infra/__init__.py
"""Backend client, audit trail, HTTP sessions, logging and metrics."""
