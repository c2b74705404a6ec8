"""
HTTP API tests. The session is built with fake services so no audio device
or grading server is needed.
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import main
from models.errors import ApiError

from tests.conftest import QUESTIONS, build_session


@pytest.fixture
def client(monkeypatch, fakes):
    monkeypatch.setattr(main, "InterviewStateMachine", lambda payload: build_session(fakes, payload))
    with TestClient(main.app) as test_client:
        yield test_client


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"
    assert response.json()["active_session"] is None


def test_no_session_is_400(client):
    assert client.get("/session").status_code == 400
    assert client.post("/session/start").status_code == 400


def test_full_interview_flow(client, payload):
    response = client.post("/session", json=payload)
    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "presenting"
    assert body["question"] == QUESTIONS[0]
    assert "start" in body["allowed_actions"]

    assert client.post("/session/start").json()["state"] == "armed"
    assert client.put("/session/answer", json={"text": "I rolled back the deploy"}).json()["draft_answer"] == (
        "I rolled back the deploy"
    )
    assert client.post("/session/next").json()["current_index"] == 1
    assert client.post("/session/next").json()["current_index"] == 2

    body = client.post("/session/finish").json()
    assert body["state"] == "completed"

    transcript = client.get("/session/transcript").json()
    assert len(transcript["items"]) == 3
    assert transcript["items"][0]["answer"] == "I rolled back the deploy"

    result = client.get("/session/result").json()
    assert result["overall_score"] == 82
    assert result["summary"] == "Clear and structured."
    assert result["items_graded"] == 3

    events = client.get("/debug/events").json()
    names = [entry["name"] for entry in events["event_log"]]
    assert "transcript_assembled" in names
    assert events["state"] == "completed"


def test_invalid_payload_redirects_to_setup(client):
    response = client.post("/session", json={"questions": []})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["redirect"] == "/setup"
    assert client.get("/session").status_code == 400


def test_rejected_action_is_409(client, payload):
    client.post("/session", json=payload)

    response = client.post("/session/pause")

    assert response.status_code == 409
    assert response.json()["detail"]["state"] == "presenting"


def test_transcript_before_finish_is_400(client, payload):
    client.post("/session", json=payload)

    assert client.get("/session/transcript").status_code == 400
    assert client.get("/session/result").status_code == 400


def test_retry_submit_after_grading_failure(client, fakes, payload):
    fakes.grader.failures = 1
    client.post("/session", json=payload)

    body = client.post("/session/finish").json()
    assert body["state"] == "error"
    assert body["error"]["kind"] == "submission_failed"

    body = client.post("/session/retry-submit").json()
    assert body["state"] == "completed"


def test_mute_and_speak_again(client, fakes, payload):
    client.post("/session", json=payload)

    body = client.post("/session/toggle-mute").json()
    assert body["muted"] is True
    assert body["state"] == "ready"

    body = client.post("/session/speak-again").json()
    assert body["state"] == "presenting"
    assert fakes.output.spoken == [QUESTIONS[0], QUESTIONS[0]]


def test_delete_session(client, fakes, payload):
    client.post("/session", json=payload)
    client.post("/session/start")

    assert client.delete("/session").json() == {"status": "Session cleared"}
    assert fakes.timer.armed is False
    assert fakes.capture.active is False
    assert client.get("/session").status_code == 400


def test_generate_questions(client):
    with patch.object(main.api_client, "generate_questions", return_value=["A?", "B?"]) as generate:
        response = client.post("/questions/generate", json={"role": "SRE", "questionCount": 2, "timerSec": 60})

    assert response.status_code == 200
    body = response.json()
    assert body["questions"] == ["A?", "B?"]
    assert body["timerSec"] == 60
    assert body["role"] == "SRE"
    assert "questionCount" not in body
    assert generate.call_args.args[0]["questionCount"] == 2


def test_generate_questions_upstream_error(client):
    with patch.object(main.api_client, "generate_questions", side_effect=ApiError("Server returned no questions.")):
        response = client.post("/questions/generate", json={"role": "SRE"})

    assert response.status_code == 502
    assert response.json()["detail"] == "Server returned no questions."
