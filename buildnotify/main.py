# buildnotify/main.py
"""
Process entrypoint.

    uvicorn buildnotify.main:app
    python -m buildnotify.main
"""
from buildnotify.config import load_settings
from buildnotify.transport.http_app import create_app

settings = load_settings()
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "buildnotify.main:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Disable in prod (use middleware logging)
        server_header=False,
        date_header=False,
    )
