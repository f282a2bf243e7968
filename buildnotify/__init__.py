# buildnotify/__init__.py
"""Authenticated Telegram notifications for construction site and crew events."""

__version__ = "1.0.0"
