"""
Prompt templates for the question generation service.
The prompt pins the output format so the response can be split line by line.
"""
from typing import Any, Dict

from utils.config import config


class Prompts:
    """Collection of prompts sent to the question generation service."""

    @staticmethod
    def question_count(setup: Dict[str, Any]) -> int:
        """Requested number of questions clamped to [1, max_questions]."""
        try:
            n = int(setup.get("questionCount") or setup.get("question_count") or 0)
        except (TypeError, ValueError):
            n = 0
        if n <= 0:
            n = config.session.default_question_count
        return max(1, min(config.session.max_questions, n))

    @staticmethod
    def context_block(setup: Dict[str, Any]) -> str:
        """Role / company / mode / level / topics lines, blanks dropped."""
        role = setup.get("role")
        major = setup.get("major")
        topics = setup.get("topics") or []

        lines = [
            f"Role: {role}" if role else (f"Major: {major}" if major else ""),
            f"Company: {setup['company']}" if setup.get("company") else "",
            f"Mode: {setup.get('mode') or 'Auto'}  •  Level: {setup.get('level') or 'Auto'}",
            f"Focus: {', '.join(topics)}" if topics else "",
        ]
        return "\n".join(line for line in lines if line)

    @classmethod
    def question_generation(cls, setup: Dict[str, Any]) -> str:
        """Prompt asking for exactly n numbered interview questions."""
        n = cls.question_count(setup)
        numbered = "  ".join(f"{i + 1}. <question>" for i in range(n))
        ctx = cls.context_block(setup)

        return "\n".join([
            f"Return EXACTLY {n} interview questions.",
            f"FORMAT: {numbered}",
            f"One question per line. Number the lines 1..{n}.",
            "No preamble, no headings, no markdown, no code fences, no explanations.",
            "Each question must be concise (≤ 24 words) and specific to the context.",
            "Avoid duplicates; vary topics and difficulty appropriately.",
            "",
            "CONTEXT:",
            ctx or "General interview.",
        ])
