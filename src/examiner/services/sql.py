from __future__ import annotations

import datetime as dt
import json
import logging
import uuid
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

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
from ..models import AssessmentRow, AttemptAnswerRow, AttemptRow, QuestionRow, utcnow
from .base import AssessmentCatalog, AttemptService, Conflict, NotFound

logger = logging.getLogger(__name__)


def _parse_options(options_json: str | None) -> tuple[Option, ...]:
    if not options_json:
        return ()
    try:
        raw = json.loads(options_json)
    except Exception:
        return ()
    if not isinstance(raw, list):
        return ()
    options: list[Option] = []
    for entry in raw:
        if isinstance(entry, dict) and entry.get("id") is not None:
            options.append(Option(str(entry["id"]), str(entry.get("label") or entry.get("text") or entry["id"])))
        elif isinstance(entry, str) and entry:
            options.append(Option(entry, entry))
    return tuple(options)


def row_to_question(row: QuestionRow) -> Question:
    qtype = QuestionType(row.question_type)
    options = _parse_options(row.options_json) if qtype.is_choice else ()
    if qtype == QuestionType.TRUE_FALSE and not options:
        options = TRUE_FALSE_OPTIONS
    return Question(id=row.id, type=qtype, prompt=row.prompt, options=options, points=row.points or 1)


def row_to_assessment(row: AssessmentRow, questions: list[QuestionRow]) -> Assessment:
    return Assessment(
        id=row.id,
        title=row.title,
        description=row.description,
        questions=tuple(row_to_question(q) for q in questions),
        time_limit_minutes=row.time_limit_minutes or None,
        passing_score=row.passing_score,
        show_score_immediately=bool(row.show_score_immediately),
        show_correct_answers=bool(row.show_correct_answers),
    )


def _row_to_saved_answer(row: AttemptAnswerRow) -> SavedAnswer:
    if row.selected_option_ids_json:
        try:
            ids = [str(x) for x in json.loads(row.selected_option_ids_json)]
        except Exception:
            ids = []
        if ids:
            return SavedAnswer(row.question_id, ChoiceAnswer(tuple(ids)))
    return SavedAnswer(row.question_id, TextAnswer(row.answer_text or ""))


def row_to_attempt(row: AttemptRow, answers: list[AttemptAnswerRow] | None = None) -> Attempt:
    return Attempt(
        id=row.id,
        assessment_id=row.assessment_id,
        started_at=ensure_aware(row.started_at),
        status=AttemptStatus(row.status),
        answers=tuple(_row_to_saved_answer(a) for a in (answers or [])),
        completed_at=ensure_aware(row.completed_at) if row.completed_at else None,
        score=row.score,
    )


async def _load_questions(s: AsyncSession, assessment_id: str) -> list[QuestionRow]:
    return list((await s.execute(
        select(QuestionRow)
        .where(QuestionRow.assessment_id == assessment_id)
        .order_by(QuestionRow.order_index, QuestionRow.id)
    )).scalars().all())


class SqlAssessmentCatalog(AssessmentCatalog):
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self.sessionmaker = sessionmaker

    async def _get_assessment(self, assessment_id: str) -> Assessment:
        async with self.sessionmaker() as s:
            row = await s.get(AssessmentRow, assessment_id)
            if not row or not row.is_published:
                raise NotFound(f"assessment {assessment_id} not found")
            return row_to_assessment(row, await _load_questions(s, assessment_id))

    async def _list_assessments(self) -> list[Assessment]:
        async with self.sessionmaker() as s:
            rows = (await s.execute(
                select(AssessmentRow)
                .where(AssessmentRow.is_published.is_(True))
                .order_by(AssessmentRow.created_at, AssessmentRow.id)
            )).scalars().all()
            return [row_to_assessment(row, await _load_questions(s, row.id)) for row in rows]


class SqlAttemptService(AttemptService):
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        learner_id: int,
        *,
        now: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.learner_id = learner_id
        self._now = now

    async def _own_attempt(self, s: AsyncSession, attempt_id: str) -> AttemptRow:
        row = await s.get(AttemptRow, attempt_id)
        if not row or row.learner_id != self.learner_id:
            raise NotFound(f"attempt {attempt_id} not found")
        return row

    async def _list_attempts(self, assessment_id: str) -> list[Attempt]:
        async with self.sessionmaker() as s:
            rows = (await s.execute(
                select(AttemptRow)
                .where(
                    AttemptRow.learner_id == self.learner_id,
                    AttemptRow.assessment_id == assessment_id,
                )
                .order_by(AttemptRow.started_at.desc())
            )).scalars().all()
            return [row_to_attempt(row) for row in rows]

    async def _start_attempt(self, assessment_id: str) -> Attempt:
        async with self.sessionmaker() as s:
            assessment = await s.get(AssessmentRow, assessment_id)
            if not assessment or not assessment.is_published:
                raise NotFound(f"assessment {assessment_id} not found")
            existing = (await s.execute(
                select(AttemptRow).where(
                    AttemptRow.learner_id == self.learner_id,
                    AttemptRow.assessment_id == assessment_id,
                    AttemptRow.status == AttemptStatus.IN_PROGRESS.value,
                )
            )).scalars().first()
            if existing:
                logger.info(
                    "attempt_start_reused learner_id=%s assessment_id=%s attempt_id=%s",
                    self.learner_id,
                    assessment_id,
                    existing.id,
                )
                return row_to_attempt(existing)
            row = AttemptRow(
                id=uuid.uuid4().hex,
                assessment_id=assessment_id,
                learner_id=self.learner_id,
                status=AttemptStatus.IN_PROGRESS.value,
                started_at=self._now(),
            )
            s.add(row)
            await s.commit()
            logger.info(
                "attempt_started learner_id=%s assessment_id=%s attempt_id=%s",
                self.learner_id,
                assessment_id,
                row.id,
            )
            return row_to_attempt(row)

    async def _get_attempt_detail(self, attempt_id: str) -> AttemptDetail:
        async with self.sessionmaker() as s:
            row = await self._own_attempt(s, attempt_id)
            answers = (await s.execute(
                select(AttemptAnswerRow)
                .where(AttemptAnswerRow.attempt_id == attempt_id)
                .order_by(AttemptAnswerRow.id)
            )).scalars().all()
            questions = await _load_questions(s, row.assessment_id)
            return AttemptDetail(
                attempt=row_to_attempt(row, list(answers)),
                questions=tuple(row_to_question(q) for q in questions),
            )

    async def _save_answer(self, attempt_id: str, question_id: str, answer: Answer) -> None:
        async with self.sessionmaker() as s:
            row = await self._own_attempt(s, attempt_id)
            if row.status != AttemptStatus.IN_PROGRESS.value:
                raise Conflict(f"attempt {attempt_id} is not in progress")
            question = await s.get(QuestionRow, question_id)
            if not question or question.assessment_id != row.assessment_id:
                raise NotFound(f"question {question_id} is not part of this assessment")
            saved = (await s.execute(
                select(AttemptAnswerRow).where(
                    AttemptAnswerRow.attempt_id == attempt_id,
                    AttemptAnswerRow.question_id == question_id,
                )
            )).scalars().first()
            if not saved:
                saved = AttemptAnswerRow(attempt_id=attempt_id, question_id=question_id)
                s.add(saved)
            if isinstance(answer, ChoiceAnswer):
                saved.selected_option_ids_json = json.dumps(list(answer.option_ids), ensure_ascii=False)
                saved.answer_text = None
            else:
                saved.answer_text = answer.text
                saved.selected_option_ids_json = None
            saved.updated_at = self._now()
            await s.commit()

    async def _submit_attempt(self, attempt_id: str) -> SubmitResult:
        async with self.sessionmaker() as s:
            row = await self._own_attempt(s, attempt_id)
            if row.status != AttemptStatus.IN_PROGRESS.value:
                raise Conflict(f"attempt {attempt_id} was already submitted")
            row.status = AttemptStatus.COMPLETED.value
            row.completed_at = self._now()
            total = (await s.execute(
                select(func.count(QuestionRow.id)).where(QuestionRow.assessment_id == row.assessment_id)
            )).scalar_one()
            await s.commit()
            logger.info(
                "attempt_submitted learner_id=%s assessment_id=%s attempt_id=%s",
                self.learner_id,
                row.assessment_id,
                attempt_id,
            )
            return SubmitResult(attempt_id=attempt_id, total=int(total or 0))
