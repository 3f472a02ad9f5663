"""Application entry point for the activity API."""

from __future__ import annotations

import argparse

from activity_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from activity_app.constants.service_constants import SQLITE_PATH
from activity_app.core.activity_manager import ActivityManager
from activity_app.core.services.storage import InMemoryStorage, SqliteStorage
from activity_app.server.api_server import start_api_server
from activity_app.utils.logging_config import configure_logging


def _build_storage(use_memory: bool):
    if use_memory:
        return InMemoryStorage()
    storage = SqliteStorage(SQLITE_PATH)
    storage.init_db()
    return storage


def main() -> None:
    """Initialize logging and storage, then serve the API until interrupted."""
    parser = argparse.ArgumentParser(description="Serve the activity API.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--memory", action="store_true", help="Keep data in memory only.")
    args = parser.parse_args()

    logger = configure_logging()
    logger.info("Starting activity API…")

    manager = ActivityManager(storage=_build_storage(args.memory))
    server_thread = start_api_server(manager=manager, host=args.host, port=args.port)
    server_thread.join()


if __name__ == "__main__":
    main()
