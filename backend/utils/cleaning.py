"""
Cleaning utilities for question generation responses.
"""
import json
import re
from typing import List, Optional


class QuestionParser:
    """
    Turns a question generation response into a list of question strings.
    Accepts either a JSON body with a `questions` array or numbered plain text.
    """

    # "1. ", "2) ", "3 - ", "4-" at the start of a line
    NUMBERING = re.compile(r"^\s*\d+[\).\-\s]*")

    # Bodies that are clearly not question text
    HTML_START = re.compile(r"^\s*<")
    NOT_FOUND = re.compile(r"not found", re.IGNORECASE)

    @classmethod
    def strip_numbering(cls, line: str) -> str:
        return cls.NUMBERING.sub("", line).strip()

    @classmethod
    def parse_lines(cls, raw: str) -> List[str]:
        """Split text into questions, one per non-empty line."""
        questions = []
        for line in re.split(r"\r?\n", raw or ""):
            cleaned = cls.strip_numbering(line)
            if cleaned:
                questions.append(cleaned)
        return questions

    @classmethod
    def looks_like_error_page(cls, raw: str) -> bool:
        return bool(cls.HTML_START.search(raw or "")) or bool(cls.NOT_FOUND.search(raw or ""))

    @classmethod
    def parse_json(cls, raw: str) -> Optional[List[str]]:
        """Questions from a JSON body, or None when it is not usable JSON."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None
        if not isinstance(data, dict):
            return None
        questions = data.get("questions")
        if not isinstance(questions, list):
            return []
        return [str(q).strip() for q in questions if q is not None and str(q).strip()]
