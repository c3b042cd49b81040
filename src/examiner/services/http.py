from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from ..engine.types import Answer, Assessment, Attempt, AttemptDetail, SubmitResult
from .base import AssessmentCatalog, AttemptService, ServiceError
from .payloads import (
    AssessmentPayload,
    AttemptDetailPayload,
    AttemptPayload,
    SubmitResultPayload,
    answer_to_wire,
    to_assessment,
    to_attempt,
    to_attempt_detail,
    to_submit_result,
)

logger = logging.getLogger(__name__)


@dataclass
class ApiClient:
    base_url: str
    token: str | None = None
    timeout_s: float = 10.0
    session: requests.Session = field(default_factory=requests.Session)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request_sync(self, method: str, endpoint: str, payload: dict[str, Any] | None) -> Any:
        url = f"{self.base_url.rstrip('/')}{endpoint}"
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout_s,
            )
        except requests.exceptions.Timeout as exc:
            raise ServiceError(f"request timed out: {method} {endpoint}") from exc
        except requests.exceptions.RequestException as exc:
            raise ServiceError(f"request failed: {method} {endpoint}: {exc}") from exc
        if not response.ok:
            raise ServiceError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise ServiceError(f"invalid JSON from {endpoint}", status_code=response.status_code) from exc
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def request(self, method: str, endpoint: str, payload: dict[str, Any] | None = None) -> Any:
        logger.debug("api_request method=%s endpoint=%s", method, endpoint)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._request_sync, method, endpoint, payload),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise ServiceError(f"request timed out: {method} {endpoint}") from exc

    async def get(self, endpoint: str) -> Any:
        return await self.request("GET", endpoint)

    async def post(self, endpoint: str, payload: dict[str, Any] | None = None) -> Any:
        return await self.request("POST", endpoint, payload)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Request failed ({response.status_code})"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            message = body["message"]
            if isinstance(message, list):
                return "; ".join(str(m) for m in message)
            return str(message)
    return "Request failed"


def _as_list(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    return []


class HttpAssessmentCatalog(AssessmentCatalog):
    def __init__(self, client: ApiClient, *, lang: str = "en") -> None:
        self.client = client
        self.lang = lang

    async def _get_assessment(self, assessment_id: str) -> Assessment:
        data = await self.client.get(f"/assessments/{assessment_id}")
        if not data:
            raise ServiceError(f"assessment {assessment_id} not found", status_code=404)
        return to_assessment(AssessmentPayload.model_validate(data), self.lang)

    async def _list_assessments(self) -> list[Assessment]:
        data = await self.client.get("/assessments")
        return [to_assessment(AssessmentPayload.model_validate(item), self.lang) for item in _as_list(data)]


class HttpAttemptService(AttemptService):
    def __init__(self, client: ApiClient, *, lang: str = "en") -> None:
        self.client = client
        self.lang = lang
        self._question_counts: dict[str, int] = {}

    async def _list_attempts(self, assessment_id: str) -> list[Attempt]:
        data = await self.client.get(f"/attempts/my/history?assessmentId={assessment_id}")
        attempts = [to_attempt(AttemptPayload.model_validate(item)) for item in _as_list(data)]
        return [a for a in attempts if a.assessment_id == assessment_id]

    async def _start_attempt(self, assessment_id: str) -> Attempt:
        data = await self.client.post("/attempts/start", {"assessmentId": assessment_id})
        return to_attempt(AttemptPayload.model_validate(data))

    async def _get_attempt_detail(self, attempt_id: str) -> AttemptDetail:
        data = await self.client.get(f"/attempts/{attempt_id}")
        detail = to_attempt_detail(AttemptDetailPayload.model_validate(data), self.lang)
        self._question_counts[attempt_id] = len(detail.questions)
        return detail

    async def _save_answer(self, attempt_id: str, question_id: str, answer: Answer) -> None:
        payload = {"questionId": question_id, **answer_to_wire(answer)}
        await self.client.post(f"/attempts/{attempt_id}/answers", payload)

    async def _submit_attempt(self, attempt_id: str) -> SubmitResult:
        data = await self.client.post(f"/attempts/{attempt_id}/submit")
        payload = SubmitResultPayload.model_validate(data if isinstance(data, dict) else {})
        return to_submit_result(attempt_id, payload, self._question_counts.get(attempt_id, 0))
