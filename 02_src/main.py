"""Main entry point for Messenger Core."""

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from messenger.api import create_fastapi_app
from messenger.app import Application
from messenger.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def main():
    """Load .env, configure logging and serve the API."""
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")
    setup_logging()

    host = os.getenv("API_HOST", "localhost")
    port = int(os.getenv("API_PORT", "8000"))

    # DATABASE_URL is resolved by Application; ":memory:" gives a throwaway store
    application = Application(db_path=os.getenv("DATABASE_URL"))
    logger.info("Serving messenger API on %s:%d", host, port)

    uvicorn.run(
        create_fastapi_app(application),
        host=host,
        port=port,
        log_config=None,
        ws_ping_interval=20.0,
    )


if __name__ == "__main__":
    main()
