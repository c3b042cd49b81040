from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Union


class QuestionType(str, Enum):
    MCQ = "mcq"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    CODE = "code"

    @property
    def is_choice(self) -> bool:
        return self in (QuestionType.MCQ, QuestionType.TRUE_FALSE)


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class Phase(str, Enum):
    NO_ATTEMPT = "NO_ATTEMPT"
    RESUMING = "RESUMING"
    ACTIVE = "ACTIVE"
    SUBMITTING = "SUBMITTING"
    FINISHED = "FINISHED"
    ERROR = "ERROR"


class DraftStatus(str, Enum):
    ABSENT = "absent"
    DRAFT = "draft"
    PERSISTED = "persisted"
    FINAL = "final"


@dataclass(frozen=True)
class Option:
    id: str
    label: str


TRUE_FALSE_OPTIONS: tuple[Option, ...] = (Option("true", "True"), Option("false", "False"))


@dataclass(frozen=True)
class Question:
    id: str
    type: QuestionType
    prompt: str
    options: tuple[Option, ...] = ()
    points: float = 1

    def option_ids(self) -> list[str]:
        return [opt.id for opt in self.options]

    def option(self, option_id: str) -> Option | None:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None


@dataclass(frozen=True)
class Assessment:
    id: str
    title: str
    questions: tuple[Question, ...] = ()
    time_limit_minutes: int | None = None
    passing_score: int = 50
    show_score_immediately: bool = False
    show_correct_answers: bool = False
    description: str | None = None

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def is_timed(self) -> bool:
        return bool(self.time_limit_minutes)


@dataclass(frozen=True)
class TextAnswer:
    text: str


@dataclass(frozen=True)
class ChoiceAnswer:
    option_ids: tuple[str, ...]

    @classmethod
    def single(cls, option_id: str) -> "ChoiceAnswer":
        return cls((option_id,))


Answer = Union[TextAnswer, ChoiceAnswer]


@dataclass(frozen=True)
class SavedAnswer:
    question_id: str
    answer: Answer


@dataclass(frozen=True)
class Attempt:
    id: str
    assessment_id: str
    started_at: dt.datetime
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    answers: tuple[SavedAnswer, ...] = ()
    completed_at: dt.datetime | None = None
    score: float | None = None

    @property
    def in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS


@dataclass(frozen=True)
class AttemptDetail:
    attempt: Attempt
    questions: tuple[Question, ...] = ()


@dataclass(frozen=True)
class SubmitResult:
    attempt_id: str
    score: float | None = None
    passed: bool | None = None
    correct_count: int | None = None
    total: int = 0


@dataclass(frozen=True)
class SessionEvent:
    kind: str
    phase: Phase
    level: str = "info"  # info | warning | error
    detail: str = ""
    question_id: str | None = None


@dataclass(frozen=True)
class SessionView:
    phase: Phase
    assessment: Assessment | None
    remaining_seconds: int | None
    index: int
    total: int
    question: Question | None
    draft: Answer | None
    awaiting_confirmation: bool = False
    result: SubmitResult | None = None
    answered: int = 0
    last_notice: SessionEvent | None = None

    @property
    def position(self) -> int:
        return self.index + 1 if self.total else 0

    @property
    def is_last(self) -> bool:
        return self.total > 0 and self.index == self.total - 1

    @property
    def is_first(self) -> bool:
        return self.index == 0


def ensure_aware(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value
