from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .errors import WrongAnswerShape
from .types import Answer, ChoiceAnswer, DraftStatus, Question, SavedAnswer, TextAnswer

logger = logging.getLogger(__name__)


def check_answer_shape(question: Question, answer: Answer) -> None:
    if question.type.is_choice:
        if not isinstance(answer, ChoiceAnswer):
            raise WrongAnswerShape(question.id, question.type.value, "expected a choice answer")
        if len(answer.option_ids) != 1:
            raise WrongAnswerShape(question.id, question.type.value, "exactly one option must be selected")
        known = set(question.option_ids())
        unknown = [oid for oid in answer.option_ids if oid not in known]
        if unknown:
            raise WrongAnswerShape(question.id, question.type.value, f"unknown options {unknown}")
        return
    if not isinstance(answer, TextAnswer):
        raise WrongAnswerShape(question.id, question.type.value, "expected a text answer")


class AnswerStore:
    def __init__(self, questions: Sequence[Question]) -> None:
        self._questions: dict[str, Question] = {q.id: q for q in questions}
        self._order: list[str] = [q.id for q in questions]
        self._answers: dict[str, Answer] = {}
        self._status: dict[str, DraftStatus] = {}

    def __len__(self) -> int:
        return len(self._answers)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._answers

    def write(self, question_id: str, answer: Answer) -> None:
        question = self._questions[question_id]
        check_answer_shape(question, answer)
        if self._answers.get(question_id) == answer and self._status.get(question_id) != DraftStatus.FINAL:
            return
        self._answers[question_id] = answer
        self._status[question_id] = DraftStatus.DRAFT

    def get(self, question_id: str) -> Answer | None:
        return self._answers.get(question_id)

    def status(self, question_id: str) -> DraftStatus:
        return self._status.get(question_id, DraftStatus.ABSENT)

    def pending(self, question_id: str) -> Answer | None:
        if self._status.get(question_id) != DraftStatus.DRAFT:
            return None
        return self._answers.get(question_id)

    def drafts(self) -> list[str]:
        return [qid for qid in self._order if self._status.get(qid) == DraftStatus.DRAFT]

    def mark_persisted(self, question_id: str, answer: Answer) -> bool:
        # an ack for an older value must not hide a newer local edit
        if self._answers.get(question_id) != answer:
            return False
        if self._status.get(question_id) != DraftStatus.DRAFT:
            return False
        self._status[question_id] = DraftStatus.PERSISTED
        return True

    def rehydrate(self, saved: Iterable[SavedAnswer]) -> int:
        loaded = 0
        for item in saved:
            question = self._questions.get(item.question_id)
            if question is None:
                logger.warning("answer_rehydrate_skipped question_id=%s reason=unknown_question", item.question_id)
                continue
            try:
                check_answer_shape(question, item.answer)
            except WrongAnswerShape as exc:
                logger.warning("answer_rehydrate_skipped question_id=%s reason=%s", item.question_id, exc)
                continue
            if item.question_id not in self._answers:
                loaded += 1
            self._answers[item.question_id] = item.answer
            self._status[item.question_id] = DraftStatus.PERSISTED
        return loaded

    def finalize(self) -> None:
        for qid in self._answers:
            self._status[qid] = DraftStatus.FINAL

    def snapshot(self) -> dict[str, Answer]:
        return dict(self._answers)
