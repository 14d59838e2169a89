"""Review adapters for AI text review.

Provides a base interface, a Gemini `generateContent` adapter built on
requests, and a deterministic mock for testing.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import requests

from ai_review.prompt_builder import DESCRIPTIONS_BEGIN, DESCRIPTIONS_END
from ai_review.validator import ReviewOutputValidationError
from pdm_qc.config import AIReviewSettings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class ReviewTransportError(RuntimeError):
    """Raised when the review backend cannot be reached after retries."""


class BaseReviewAdapter(ABC):
    """Abstract base for all review adapters."""

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Send a prompt to the model and return the raw response text.

        Args:
            prompt: The fully formatted prompt string.

        Returns:
            Raw string response from the model (expected to be JSON).
        """


class GeminiReviewAdapter(BaseReviewAdapter):
    """Adapter for the Gemini `generateContent` REST endpoint.

    Configured for low-temperature JSON output. Rate limits, server errors,
    timeouts and connection failures are retried with exponential backoff;
    other client errors fail on the first attempt.
    """

    def __init__(
        self,
        settings: AIReviewSettings,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise the Gemini adapter.

        Args:
            settings: AI review settings (key, model, timeouts, retries).
            session: Optional HTTP session; a new one is created if omitted.
            sleep: Backoff sleep function, replaceable in tests.
        """
        self._settings = settings
        self._session = session or requests.Session()
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        base_url = self._settings.base_url.rstrip("/")
        return f"{base_url}/models/{self._settings.model}:generateContent"

    def generate(self, prompt: str) -> str:
        """Call Gemini and return the first candidate's text.

        Args:
            prompt: The fully formatted prompt string.

        Returns:
            Raw text content of the first candidate.

        Raises:
            ReviewTransportError: If the request fails after retries.
            ReviewOutputValidationError: If the body is not JSON or its
                text part is not a string.
        """
        response = self._post(
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": 0.1,
                    "responseMimeType": "application/json",
                },
            }
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise ReviewOutputValidationError(
                stage="format",
                errors=["response body was not valid JSON"],
                raw_response=response.text,
            ) from exc
        return self._extract_text(body)

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        max_attempts = max(1, self._settings.max_attempts)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = self._session.post(
                    self.endpoint,
                    params={"key": self._settings.api_key},
                    json=payload,
                    timeout=self._settings.timeout_seconds,
                    verify=self._settings.verify_ssl,
                )
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                last_error = exc
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(
                        "AI review request failed status=%s model=%s error=%s",
                        status_code,
                        self._settings.model,
                        self._redact(exc),
                    )
                    raise ReviewTransportError("AI review request failed.") from None
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = exc

            if attempt >= max_attempts:
                break

            backoff_seconds = self._settings.backoff_initial_seconds * (
                self._settings.backoff_multiplier ** (attempt - 1)
            )
            logger.warning(
                "AI review request retry attempt=%s/%s wait_seconds=%.2f model=%s",
                attempt,
                max_attempts,
                backoff_seconds,
                self._settings.model,
            )
            self._sleep(backoff_seconds)

        logger.error(
            "AI review request exhausted retries model=%s error=%s",
            self._settings.model,
            self._redact(last_error),
        )
        raise ReviewTransportError("AI review request failed after retries.") from None

    def _redact(self, error: Optional[Exception]) -> str:
        message = str(error) if error is not None else ""
        if self._settings.api_key:
            message = message.replace(self._settings.api_key, "***")
        return message

    @staticmethod
    def _extract_text(body: Any) -> str:
        try:
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return ""
        if text is None:
            return ""
        if not isinstance(text, str):
            raise ReviewOutputValidationError(
                stage="format",
                errors=["candidate text part is not a string"],
                raw_response=json.dumps(body)[:2000] if body is not None else "",
            )
        return text


class MockReviewAdapter(BaseReviewAdapter):
    """Deterministic adapter for local testing and CI.

    Returns a fixed response when one is given; otherwise reports no issues
    for every PDM number found in the prompt's description block.
    """

    def __init__(self, response: Optional[str] = None) -> None:
        self._response = response
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        """Return the fixed response, or an empty issue list per key.

        Args:
            prompt: The prompt; its description block supplies the keys.

        Returns:
            A JSON string keyed by PDM number.
        """
        self.prompts.append(prompt)
        if self._response is not None:
            return self._response

        start = prompt.find(DESCRIPTIONS_BEGIN)
        end = prompt.find(DESCRIPTIONS_END)
        if start < 0 or end < start:
            return "{}"
        block = prompt[start + len(DESCRIPTIONS_BEGIN):end]
        descriptions = json.loads(block)
        return json.dumps({key: [] for key in descriptions})
