import asyncio
import datetime as dt
import json

import requests

from examiner.engine.types import AttemptStatus, ChoiceAnswer, QuestionType, TextAnswer
from examiner.services.http import ApiClient, HttpAssessmentCatalog, HttpAttemptService

BASE = "http://api.test/api/v1"


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None):
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else json.dumps(body).encode()

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeHttp:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        path = url[len(BASE):]
        self.calls.append({"method": method, "path": path, "json": json, "headers": headers, "timeout": timeout})
        result = self.routes[(method, path)]
        if isinstance(result, Exception):
            raise result
        return result


def _client(routes, token="tok-1") -> tuple[ApiClient, FakeHttp]:
    http = FakeHttp(routes)
    return ApiClient(BASE + "/", token=token, timeout_s=3, session=http), http


ASSESSMENT = {
    "id": "as-1",
    "titleEn": "SQL joins",
    "titleAr": "الربط في SQL",
    "timeLimitMinutes": 15,
    "passingScore": 70,
    "showScoreImmediately": True,
    "assessmentQuestions": [
        {"sortOrder": 2, "question": {"id": "q-tf", "type": "true_false", "questionEn": "LEFT JOIN keeps all rows."}},
        {
            "sortOrder": 1,
            "overridePoints": 2,
            "question": {
                "id": 11,
                "type": "mcq",
                "questionEn": "Which join?",
                "questionAr": "أي ربط؟",
                "points": 1,
                "answerData": [{"id": "o1", "textEn": "INNER", "textAr": "داخلي"}, {"id": "o2", "text": "CROSS"}],
            },
        },
        {"sortOrder": 3, "question": {"id": "q-x", "type": "matching", "questionEn": "unsupported"}},
    ],
}


def test_assessment_payload_is_normalized():
    async def _run():
        client, http = _client({("GET", "/assessments/as-1"): FakeResponse(200, {"data": ASSESSMENT})})
        got = await HttpAssessmentCatalog(client).get_assessment("as-1")
        assert got.ok
        a = got.value
        assert a.title == "SQL joins"
        assert a.time_limit_minutes == 15
        assert a.show_score_immediately is True
        assert [q.id for q in a.questions] == ["11", "q-tf"]
        assert a.questions[0].points == 2
        assert [o.label for o in a.questions[0].options] == ["INNER", "CROSS"]
        assert a.questions[1].type == QuestionType.TRUE_FALSE
        assert a.questions[1].option_ids() == ["true", "false"]
        assert http.calls[0]["headers"]["Authorization"] == "Bearer tok-1"
        assert http.calls[0]["timeout"] == 3

        client_ar, _ = _client({("GET", "/assessments/as-1"): FakeResponse(200, {"data": ASSESSMENT})})
        arabic = (await HttpAssessmentCatalog(client_ar, lang="ar").get_assessment("as-1")).value
        assert arabic.title == "الربط في SQL"
        assert arabic.questions[0].prompt == "أي ربط؟"
        assert arabic.questions[0].options[1].label == "CROSS"

    asyncio.run(_run())


def test_history_finds_in_progress_attempt():
    async def _run():
        history = [
            {"id": "at-1", "assessmentId": "as-1", "startedAt": "2025-03-01T08:00:00.000Z", "status": "COMPLETED"},
            {"id": "at-2", "assessmentId": "as-1", "startedAt": "2025-03-01T09:00:00.000Z", "status": "in_progress"},
        ]
        client, http = _client({("GET", "/attempts/my/history?assessmentId=as-1"): FakeResponse(200, {"data": history})})
        found = await HttpAttemptService(client).find_in_progress_attempt("as-1")
        assert found.ok
        assert found.value.id == "at-2"
        assert found.value.status == AttemptStatus.IN_PROGRESS
        assert found.value.started_at == dt.datetime(2025, 3, 1, 9, 0, tzinfo=dt.timezone.utc)

    asyncio.run(_run())


def test_attempt_flow_payloads():
    async def _run():
        detail = {
            "attempt": {
                "id": "at-2",
                "assessmentId": "as-1",
                "startedAt": "2025-03-01T09:00:00Z",
                "status": "IN_PROGRESS",
                "answers": [
                    {"questionId": "11", "selectedOptionIds": ["o2"]},
                    {"questionId": "q-tf", "answerText": None, "selectedOptionIds": ["true"]},
                ],
            },
            "questions": [ASSESSMENT["assessmentQuestions"][1]["question"], ASSESSMENT["assessmentQuestions"][0]["question"]],
        }
        client, http = _client({
            ("POST", "/attempts/start"): FakeResponse(201, {"data": detail["attempt"]}),
            ("GET", "/attempts/at-2"): FakeResponse(200, {"data": detail}),
            ("POST", "/attempts/at-2/answers"): FakeResponse(204),
            ("POST", "/attempts/at-2/submit"): FakeResponse(200, {"data": {"score": 50, "passed": False, "correctCount": 1}}),
        })
        service = HttpAttemptService(client)
        started = await service.start_attempt("as-1")
        assert started.value.id == "at-2"
        assert http.calls[0]["json"] == {"assessmentId": "as-1"}

        loaded = (await service.get_attempt_detail("at-2")).value
        answers = {a.question_id: a.answer for a in loaded.attempt.answers}
        assert answers["11"] == ChoiceAnswer.single("o2")
        assert len(loaded.questions) == 2

        assert (await service.save_answer("at-2", "11", ChoiceAnswer.single("o1"))).ok
        assert (await service.save_answer("at-2", "q-free", TextAnswer("because"))).ok
        assert http.calls[2]["json"] == {"questionId": "11", "selectedOptionIds": ["o1"]}
        assert http.calls[3]["json"] == {"questionId": "q-free", "answerText": "because"}

        result = (await service.submit_attempt("at-2")).value
        assert result.score == 50
        assert result.passed is False
        assert result.correct_count == 1
        assert result.total == 2

    asyncio.run(_run())


def test_server_errors_become_failures():
    async def _run():
        client, _ = _client({
            ("POST", "/attempts/at-9/submit"): FakeResponse(409, {"error": {"message": "Attempt already submitted"}}),
            ("POST", "/attempts/at-9/answers"): FakeResponse(400, {"message": ["answerText must be a string"]}),
            ("GET", "/attempts/at-9"): FakeResponse(502),
            ("GET", "/assessments/slow"): requests.exceptions.Timeout("read timed out"),
            ("GET", "/assessments/down"): requests.exceptions.ConnectionError("refused"),
        })
        service = HttpAttemptService(client)
        submitted = await service.submit_attempt("at-9")
        assert submitted.failure.status_code == 409
        assert submitted.failure.message == "Attempt already submitted"
        assert submitted.failure.operation == "submit_attempt"

        saved = await service.save_answer("at-9", "q", TextAnswer("x"))
        assert saved.failure.message == "answerText must be a string"

        detail = await service.get_attempt_detail("at-9")
        assert detail.failure.message == "Request failed (502)"

        catalog = HttpAssessmentCatalog(client)
        slow = await catalog.get_assessment("slow")
        assert "timed out" in slow.failure.message
        down = await catalog.get_assessment("down")
        assert "request failed" in down.failure.message

    asyncio.run(_run())


def test_list_accepts_paginated_envelope():
    async def _run():
        client, _ = _client({("GET", "/assessments"): FakeResponse(200, {"data": {"items": [ASSESSMENT], "total": 1}})})
        listed = await HttpAssessmentCatalog(client).list_assessments()
        assert [a.id for a in listed.value] == ["as-1"]

    asyncio.run(_run())
