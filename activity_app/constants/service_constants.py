"""External service settings, overridable through environment variables."""

import os

QUESTION_API_BASE_URL: str = os.environ.get(
    "ACTIVITY_QUESTION_API_URL", "http://localhost:8080"
)
QUESTION_API_TIMEOUT_SECONDS: float = float(
    os.environ.get("ACTIVITY_QUESTION_API_TIMEOUT", "30")
)
SQLITE_PATH: str = os.environ.get("ACTIVITY_SQLITE_PATH", "db/activities.db")
