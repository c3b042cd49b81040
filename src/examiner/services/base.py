from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from ..engine.types import Answer, Assessment, Attempt, AttemptDetail, SubmitResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ServiceError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NotFound(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class Conflict(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409)


@dataclass(frozen=True)
class ServiceFailure:
    operation: str
    message: str
    status_code: int | None = None


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Any = None
    failure: ServiceFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome[Any]":
        return cls(value=value)

    @classmethod
    def failed(cls, failure: ServiceFailure) -> "Outcome[Any]":
        return cls(failure=failure)


async def guarded(operation: str, call: Callable[[], Awaitable[T]]) -> Outcome[T]:
    try:
        return Outcome.success(await call())
    except ServiceError as exc:
        logger.warning(
            "service_call_failed operation=%s status=%s message=%s",
            operation,
            exc.status_code,
            exc.message,
        )
        return Outcome.failed(ServiceFailure(operation, exc.message, exc.status_code))
    except Exception as exc:
        logger.exception("service_call_crashed operation=%s", operation)
        return Outcome.failed(ServiceFailure(operation, str(exc) or type(exc).__name__))


class AttemptService(abc.ABC):
    async def list_attempts(self, assessment_id: str) -> Outcome[list[Attempt]]:
        return await guarded("list_attempts", lambda: self._list_attempts(assessment_id))

    async def find_in_progress_attempt(self, assessment_id: str) -> Outcome[Attempt | None]:
        async def _find() -> Attempt | None:
            for attempt in await self._list_attempts(assessment_id):
                if attempt.in_progress:
                    return attempt
            return None

        return await guarded("find_in_progress_attempt", _find)

    async def start_attempt(self, assessment_id: str) -> Outcome[Attempt]:
        return await guarded("start_attempt", lambda: self._start_attempt(assessment_id))

    async def get_attempt_detail(self, attempt_id: str) -> Outcome[AttemptDetail]:
        return await guarded("get_attempt_detail", lambda: self._get_attempt_detail(attempt_id))

    async def save_answer(self, attempt_id: str, question_id: str, answer: Answer) -> Outcome[None]:
        return await guarded("save_answer", lambda: self._save_answer(attempt_id, question_id, answer))

    async def submit_attempt(self, attempt_id: str) -> Outcome[SubmitResult]:
        return await guarded("submit_attempt", lambda: self._submit_attempt(attempt_id))

    @abc.abstractmethod
    async def _list_attempts(self, assessment_id: str) -> list[Attempt]: ...

    @abc.abstractmethod
    async def _start_attempt(self, assessment_id: str) -> Attempt: ...

    @abc.abstractmethod
    async def _get_attempt_detail(self, attempt_id: str) -> AttemptDetail: ...

    @abc.abstractmethod
    async def _save_answer(self, attempt_id: str, question_id: str, answer: Answer) -> None: ...

    @abc.abstractmethod
    async def _submit_attempt(self, attempt_id: str) -> SubmitResult: ...


class AssessmentCatalog(abc.ABC):
    async def get_assessment(self, assessment_id: str) -> Outcome[Assessment]:
        return await guarded("get_assessment", lambda: self._get_assessment(assessment_id))

    async def list_assessments(self) -> Outcome[list[Assessment]]:
        return await guarded("list_assessments", self._list_assessments)

    @abc.abstractmethod
    async def _get_assessment(self, assessment_id: str) -> Assessment: ...

    @abc.abstractmethod
    async def _list_assessments(self) -> list[Assessment]: ...
