# buildnotify/transport/__init__.py
"""HTTP application, middleware and the Telegram sender."""
