"""
Validation of the grading service response.
The orchestrator forwards scores without interpreting them; it only checks
that the payload has the shape the results screen expects.
"""
from typing import Any, Dict

from models.errors import SubmissionFailedError
from models.schemas import GradeReport

DEFAULT_SUMMARY = "Summary not available."


class GradeValidator:
    """Checks and normalizes grading responses."""

    MIN_SCORE = 0
    MAX_SCORE = 100

    @classmethod
    def clamp_score(cls, value: Any) -> int:
        """Round and clamp a score into [0, 100]."""
        try:
            score = int(round(float(value)))
        except (TypeError, ValueError, OverflowError):
            raise SubmissionFailedError(f"Overall score is not a number: {value!r}")
        return max(cls.MIN_SCORE, min(cls.MAX_SCORE, score))

    @classmethod
    def validate(cls, payload: Any) -> GradeReport:
        """
        Validate a raw grading response.

        Args:
            payload: Parsed JSON returned by the grading service

        Returns:
            GradeReport with a clamped overall score

        Raises:
            SubmissionFailedError: if the payload is not an object with an
                `overall` object
        """
        if not isinstance(payload, dict):
            raise SubmissionFailedError("Grading response is not a JSON object")

        overall = payload.get("overall")
        if not isinstance(overall, dict):
            raise SubmissionFailedError("Grading response has no 'overall' section")

        items = payload.get("items", [])
        if not isinstance(items, list):
            items = []

        summary = overall.get("summary") or DEFAULT_SUMMARY

        return GradeReport(
            overall_score=cls.clamp_score(overall.get("score", 0)),
            summary=str(summary),
            items=[item for item in items if isinstance(item, dict)],
            raw=payload,
        )

    @classmethod
    def summarize(cls, report: GradeReport) -> Dict[str, Any]:
        """Short form of a report for status responses."""
        return {
            "overall_score": report.overall_score,
            "summary": report.summary,
            "items_graded": len(report.items),
        }
