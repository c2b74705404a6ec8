import pytest

from interview.grading import DEFAULT_SUMMARY, GradeValidator
from models.errors import SubmissionFailedError


def test_validate_full_report():
    payload = {
        "overall": {"score": 77.6, "summary": "Good structure, thin examples."},
        "items": [{"score": 70, "feedback": "ok"}, {"score": 85}],
    }

    report = GradeValidator.validate(payload)

    assert report.overall_score == 78
    assert report.summary == "Good structure, thin examples."
    assert len(report.items) == 2
    assert report.raw is payload


def test_missing_summary_gets_default():
    report = GradeValidator.validate({"overall": {"score": 50}})

    assert report.summary == DEFAULT_SUMMARY
    assert report.items == []


@pytest.mark.parametrize("raw, expected", [
    (-10, 0),
    (0, 0),
    (100, 100),
    (250, 100),
    ("64", 64),
])
def test_clamp_score(raw, expected):
    assert GradeValidator.clamp_score(raw) == expected


@pytest.mark.parametrize("score", ["excellent", float("inf"), float("-inf"), float("nan"), 1e999, "1e999"])
def test_non_numeric_score_rejected(score):
    with pytest.raises(SubmissionFailedError):
        GradeValidator.validate({"overall": {"score": score}})


@pytest.mark.parametrize("payload", [
    None,
    [],
    "graded",
    {},
    {"overall": 80},
    {"score": 80, "summary": "flat"},
])
def test_bad_shape_rejected(payload):
    with pytest.raises(SubmissionFailedError):
        GradeValidator.validate(payload)


def test_non_list_items_dropped():
    report = GradeValidator.validate({"overall": {"score": 10}, "items": "nope"})

    assert report.items == []


def test_summarize():
    report = GradeValidator.validate({"overall": {"score": 91, "summary": "Strong"}, "items": [{}, {}]})

    assert GradeValidator.summarize(report) == {
        "overall_score": 91,
        "summary": "Strong",
        "items_graded": 2,
    }
