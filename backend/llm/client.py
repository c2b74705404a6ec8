"""
Client for the question generation and grading server.
Handles HTTP communication and response parsing. Grading is never retried
automatically; a failed call is surfaced to the session as SubmissionFailed.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from llm.prompts import Prompts
from models.errors import ApiError
from models.schemas import Transcript
from utils.cleaning import QuestionParser
from utils.config import config

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class InterviewApiClient:
    """
    Client for the /healthz, /generate-questions and /grade endpoints.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = (base_url or config.api.base_url).rstrip("/")
        self.timeout = timeout or config.api.timeout
        logger.info(f"Interview API client initialized: {self.base_url} (timeout={self.timeout}s)")

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """Make an HTTP request, turning transport errors and non-2xx into ApiError."""
        url = self._url(endpoint)
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Can't reach server ({endpoint}): {e}") from e

        if not response.ok:
            raise ApiError(
                f"HTTP {response.status_code} – {response.text[:300]}",
                status_code=response.status_code,
            )
        return response

    def health_check(self) -> bool:
        """Check if the server is responding."""
        try:
            self._request("GET", config.api.healthz_endpoint)
            return True
        except ApiError as e:
            logger.warning(f"Health check failed: {e}")
            return False

    def generate_questions(self, setup: Dict[str, Any]) -> List[str]:
        """
        Generate interview questions for a setup.

        Args:
            setup: Role, company, mode, level, topics and questionCount

        Returns:
            Non-empty list of question strings
        """
        if not self.health_check():
            raise ApiError("Can't reach server (/healthz). Check device & server network.")

        prompt = Prompts.question_generation(setup)
        logger.info("Generating questions...")
        response = self._request("POST", config.api.generate_endpoint, json={"prompt": prompt})

        content_type = (response.headers.get("content-type") or "").lower()
        raw = response.text
        logger.info(f"Generate response ({response.status_code}): {raw[:200]}")

        if "application/json" in content_type:
            questions = QuestionParser.parse_json(raw)
            if questions is None:
                raise ApiError(f"Malformed JSON from server: {raw[:120]}…")
        else:
            if QuestionParser.looks_like_error_page(raw):
                raise ApiError(f"Unexpected non-JSON from server: {raw[:120]}…")
            questions = QuestionParser.parse_lines(raw)

        if not questions:
            raise ApiError("Server returned no questions.")
        return questions

    def grade(self, transcript: Transcript) -> Dict[str, Any]:
        """
        Send a transcript to the grading endpoint.

        Returns:
            Parsed JSON body (shape validated by the caller)
        """
        body = transcript.to_grading_payload()
        logger.info(f"Submitting transcript with {len(body['items'])} items for grading")
        response = self._request("POST", config.api.grade_endpoint, json=body)
        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(f"Grading response is not JSON: {response.text[:200]}") from e
        logger.info("Grading response received")
        return data


# Global client instance
api_client = InterviewApiClient()
