"""
Main entrypoint: ScamShield risk API under uvicorn.

Env: DATABASE_URL or SCAMSHIELD_DB_PATH, API_HOST, API_PORT, LOG_LEVEL, plus the
SCAMSHIELD_* analyzer and model settings (see scamshield.config.settings).

Equivalent: uvicorn scamshield.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured logging before other imports that may log
from scamshield.shield_logging import configure_logging, get_logger

configure_logging()

logger = get_logger("main")


def main() -> None:
    """Load settings and run the FastAPI server in the main thread."""
    from scamshield.config import get_settings

    settings = get_settings()

    from scamshield.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
