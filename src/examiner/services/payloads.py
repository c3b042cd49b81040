from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..engine.types import (
    TRUE_FALSE_OPTIONS,
    Answer,
    Assessment,
    Attempt,
    AttemptDetail,
    AttemptStatus,
    ChoiceAnswer,
    Option,
    Question,
    QuestionType,
    SavedAnswer,
    SubmitResult,
    TextAnswer,
    ensure_aware,
)

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class OptionPayload(WireModel):
    id: str
    text: str | None = None
    text_ar: str | None = None
    text_en: str | None = None


class QuestionPayload(WireModel):
    id: str
    type: str
    text: str | None = None
    question_ar: str | None = None
    question_en: str | None = None
    points: float | None = None
    answer_data: Any = None


class AssessmentQuestionPayload(WireModel):
    sort_order: int = 0
    override_points: float | None = None
    question: QuestionPayload


class AssessmentPayload(WireModel):
    id: str
    title_ar: str | None = None
    title_en: str | None = None
    title: str | None = None
    description_ar: str | None = None
    description_en: str | None = None
    time_limit_minutes: int | None = None
    passing_score: int | None = None
    show_score_immediately: bool = False
    show_correct_answers: bool = False
    assessment_questions: list[AssessmentQuestionPayload] = []


class AttemptAnswerPayload(WireModel):
    question_id: str
    answer_text: str | None = None
    selected_option_ids: list[str] | None = None


class AttemptPayload(WireModel):
    id: str
    assessment_id: str
    started_at: dt.datetime
    status: str = AttemptStatus.IN_PROGRESS.value
    completed_at: dt.datetime | None = None
    score: float | None = None
    answers: list[AttemptAnswerPayload] | None = None


class AttemptDetailPayload(WireModel):
    attempt: AttemptPayload
    questions: list[QuestionPayload] = []


class SubmitResultPayload(WireModel):
    id: str | None = None
    score: float | None = None
    passed: bool | None = None
    correct_count: int | None = None
    total_questions: int | None = None


def _pick(lang: str, ar: str | None, en: str | None, fallback: str | None = None) -> str:
    ordered = (ar, en) if lang == "ar" else (en, ar)
    for value in (*ordered, fallback):
        if value:
            return value
    return ""


def _options(payload: QuestionPayload, lang: str) -> tuple[Option, ...]:
    raw = payload.answer_data if isinstance(payload.answer_data, list) else []
    options: list[Option] = []
    for entry in raw:
        if not isinstance(entry, dict) or entry.get("id") is None:
            continue
        opt = OptionPayload.model_validate(entry)
        options.append(Option(opt.id, _pick(lang, opt.text_ar, opt.text_en, opt.text)))
    return tuple(options)


def to_question(payload: QuestionPayload, lang: str, *, points: float | None = None) -> Question | None:
    try:
        qtype = QuestionType(payload.type)
    except ValueError:
        logger.warning("question_type_unsupported question_id=%s type=%s", payload.id, payload.type)
        return None
    options: tuple[Option, ...] = ()
    if qtype.is_choice:
        options = _options(payload, lang)
        if qtype == QuestionType.TRUE_FALSE and not options:
            options = TRUE_FALSE_OPTIONS
    return Question(
        id=payload.id,
        type=qtype,
        prompt=_pick(lang, payload.question_ar, payload.question_en, payload.text),
        options=options,
        points=points if points is not None else (payload.points or 1),
    )


def to_assessment(payload: AssessmentPayload, lang: str) -> Assessment:
    questions: list[Question] = []
    for link in sorted(payload.assessment_questions, key=lambda aq: aq.sort_order):
        question = to_question(link.question, lang, points=link.override_points)
        if question is not None:
            questions.append(question)
    return Assessment(
        id=payload.id,
        title=_pick(lang, payload.title_ar, payload.title_en, payload.title),
        description=_pick(lang, payload.description_ar, payload.description_en) or None,
        questions=tuple(questions),
        time_limit_minutes=payload.time_limit_minutes or None,
        passing_score=payload.passing_score if payload.passing_score is not None else 50,
        show_score_immediately=payload.show_score_immediately,
        show_correct_answers=payload.show_correct_answers,
    )


def to_saved_answer(payload: AttemptAnswerPayload) -> SavedAnswer:
    if payload.selected_option_ids:
        return SavedAnswer(payload.question_id, ChoiceAnswer(tuple(payload.selected_option_ids)))
    return SavedAnswer(payload.question_id, TextAnswer(payload.answer_text or ""))


def to_attempt(payload: AttemptPayload) -> Attempt:
    try:
        status = AttemptStatus(payload.status.upper())
    except ValueError:
        logger.warning("attempt_status_unknown attempt_id=%s status=%s", payload.id, payload.status)
        status = AttemptStatus.EXPIRED
    return Attempt(
        id=payload.id,
        assessment_id=payload.assessment_id,
        started_at=ensure_aware(payload.started_at),
        status=status,
        answers=tuple(to_saved_answer(a) for a in (payload.answers or [])),
        completed_at=ensure_aware(payload.completed_at) if payload.completed_at else None,
        score=payload.score,
    )


def to_attempt_detail(payload: AttemptDetailPayload, lang: str) -> AttemptDetail:
    questions = [to_question(q, lang) for q in payload.questions]
    return AttemptDetail(
        attempt=to_attempt(payload.attempt),
        questions=tuple(q for q in questions if q is not None),
    )


def to_submit_result(attempt_id: str, payload: SubmitResultPayload, total: int) -> SubmitResult:
    return SubmitResult(
        attempt_id=payload.id or attempt_id,
        score=payload.score,
        passed=payload.passed,
        correct_count=payload.correct_count,
        total=payload.total_questions or total,
    )


def answer_to_wire(answer: Answer) -> dict[str, Any]:
    if isinstance(answer, ChoiceAnswer):
        return {"selectedOptionIds": list(answer.option_ids)}
    return {"answerText": answer.text}
