"""HTTP client for the question backend that assembles custom activities."""

from __future__ import annotations

import logging
from typing import Any

import requests

from activity_app.constants.service_constants import (
    QUESTION_API_BASE_URL,
    QUESTION_API_TIMEOUT_SECONDS,
)
from activity_app.core.errors import GenerationError, MalformedQuestionError
from activity_app.core.models import Question
from activity_app.core.question_normalizer import normalize

logger = logging.getLogger(__name__)


def unwrap_generation_response(payload: Any) -> list[dict[str, Any]]:
    """Accept either a bare list of records or an ``{"items": [...]}`` object."""
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict) and isinstance(payload.get("items"), list):
        records = payload["items"]
    else:
        raise GenerationError("Question backend returned an unexpected response shape.")
    return [record for record in records if isinstance(record, dict)]


def normalize_records(records: list[dict[str, Any]], subject_label: str) -> list[Question]:
    """Normalize records, skipping the ones that cannot be used."""
    questions: list[Question] = []
    for record in records:
        try:
            questions.append(normalize(record, subject_label))
        except MalformedQuestionError as exc:
            logger.warning("Skipping question %s: %s", record.get("id"), exc)
    return questions


class QuestionApiClient:
    """Fetches question sets for a subject from the question backend."""

    def __init__(
        self,
        base_url: str = QUESTION_API_BASE_URL,
        timeout: float = QUESTION_API_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch_questions(self, subject: str, count: int, subject_label: str | None = None) -> list[Question]:
        """Return up to ``count`` canonical questions for ``subject``."""
        if not subject:
            raise GenerationError("A subject is required to build an activity.")
        if count <= 0:
            raise GenerationError("Question count must be positive.")

        url = f"{self._base_url}/questions"
        logger.info("Requesting %d questions for subject %s.", count, subject)
        try:
            response = self._session.get(
                url,
                params={"subject": subject, "limit": count},
                timeout=self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise GenerationError(f"Could not fetch questions: {exc}") from exc
        except ValueError as exc:
            raise GenerationError("Question backend returned invalid JSON.") from exc

        records = unwrap_generation_response(payload)
        questions = normalize_records(records, subject_label or subject)
        return questions[:count]
