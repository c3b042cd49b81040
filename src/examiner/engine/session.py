from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable

from ..services.base import AssessmentCatalog, AttemptService, ServiceFailure
from .answers import AnswerStore
from .clock import DeadlineClock, utcnow
from .errors import InvalidTransition, ReadOnlyError
from .navigator import Navigator
from .types import (
    Answer,
    Assessment,
    Attempt,
    AttemptDetail,
    ChoiceAnswer,
    Phase,
    Question,
    SessionEvent,
    SessionView,
    SubmitResult,
    TextAnswer,
)

logger = logging.getLogger(__name__)

Listener = Callable[[SessionEvent], Awaitable[None]]


class SubmitOutcome(str, Enum):
    IGNORED = "ignored"
    CONFIRMATION_REQUIRED = "confirmation_required"
    SUBMITTED = "submitted"
    FAILED = "failed"


class AttemptSession:
    """State machine for one learner taking one assessment.

    Manual submission and the deadline timeout share ``submit()``. The phase
    switches to SUBMITTING before any listener is awaited, so learner writes
    and a second submit are rejected while one is in flight.
    """

    def __init__(
        self,
        assessment_id: str,
        *,
        attempts: AttemptService,
        catalog: AssessmentCatalog,
        listener: Listener | None = None,
        now: Callable[[], dt.datetime] = utcnow,
        tick_s: float = 1.0,
        flush_timeout_s: float = 5.0,
        submit_retry_s: float = 5.0,
    ) -> None:
        self.assessment_id = assessment_id
        self._attempts = attempts
        self._catalog = catalog
        self._listener = listener
        self._now = now
        self._tick_s = tick_s
        self._flush_timeout_s = flush_timeout_s
        self._submit_retry_s = submit_retry_s

        self.phase = Phase.NO_ATTEMPT
        self.assessment: Assessment | None = None
        self.attempt: Attempt | None = None
        self.questions: tuple[Question, ...] = ()
        self.store: AnswerStore | None = None
        self.navigator: Navigator | None = None
        self.clock: DeadlineClock | None = None
        self.result: SubmitResult | None = None
        self.awaiting_confirmation = False
        self.events: deque[SessionEvent] = deque(maxlen=100)
        self._starting = False

    # ---------------- events ----------------
    async def _emit(
        self,
        kind: str,
        *,
        level: str = "info",
        detail: str = "",
        question_id: str | None = None,
    ) -> None:
        event = SessionEvent(kind=kind, phase=self.phase, level=level, detail=detail, question_id=question_id)
        self.events.append(event)
        if self._listener is None:
            return
        try:
            await self._listener(event)
        except Exception:
            logger.exception("session_listener_failed kind=%s assessment_id=%s", kind, self.assessment_id)

    async def _set_phase(self, phase: Phase) -> None:
        previous = self.phase
        self.phase = phase
        logger.info(
            "attempt_phase assessment_id=%s attempt_id=%s from=%s to=%s",
            self.assessment_id,
            self.attempt.id if self.attempt else None,
            previous.value,
            phase.value,
        )
        await self._emit("phase", detail=previous.value)

    def _failure_text(self, failure: ServiceFailure | None) -> str:
        if failure is None:
            return ""
        return failure.message

    def _reset(self) -> None:
        if self.clock is not None:
            self.clock.stop()
        self.assessment = None
        self.attempt = None
        self.questions = ()
        self.store = None
        self.navigator = None
        self.clock = None
        self.result = None
        self.awaiting_confirmation = False

    # ---------------- lifecycle ----------------
    async def init(self) -> Phase:
        if self.phase not in (Phase.NO_ATTEMPT, Phase.ERROR) or self.attempt is not None:
            return self.phase
        loaded = await self._catalog.get_assessment(self.assessment_id)
        if not loaded.ok:
            self._reset()
            await self._set_phase(Phase.ERROR)
            await self._emit("load_failed", level="error", detail=self._failure_text(loaded.failure))
            return self.phase
        self.assessment = loaded.value

        found = await self._attempts.find_in_progress_attempt(self.assessment_id)
        if not found.ok:
            await self._set_phase(Phase.NO_ATTEMPT)
            await self._emit("resume_failed", level="warning", detail=self._failure_text(found.failure))
            return self.phase
        if found.value is None:
            await self._set_phase(Phase.NO_ATTEMPT)
            return self.phase

        await self._set_phase(Phase.RESUMING)
        detail = await self._attempts.get_attempt_detail(found.value.id)
        if not detail.ok:
            await self._set_phase(Phase.NO_ATTEMPT)
            await self._emit("resume_failed", level="warning", detail=self._failure_text(detail.failure))
            return self.phase
        await self._activate(detail.value)
        await self._emit("resumed", detail=str(len(self.store) if self.store else 0))
        return self.phase

    async def start(self) -> Phase:
        if self.phase != Phase.NO_ATTEMPT or self.assessment is None:
            raise InvalidTransition(f"cannot start from {self.phase.value}")
        if self._starting:
            return self.phase
        self._starting = True
        try:
            started = await self._attempts.start_attempt(self.assessment_id)
            if not started.ok:
                await self._emit("start_failed", level="error", detail=self._failure_text(started.failure))
                return self.phase
            detail = await self._attempts.get_attempt_detail(started.value.id)
            if not detail.ok:
                self._reset()
                await self._set_phase(Phase.ERROR)
                await self._emit("load_failed", level="error", detail=self._failure_text(detail.failure))
                return self.phase
            await self._activate(detail.value)
            await self._emit("started")
            return self.phase
        finally:
            self._starting = False

    async def retry(self) -> Phase:
        if self.phase != Phase.ERROR:
            raise InvalidTransition(f"retry is only possible from ERROR, not {self.phase.value}")
        self._reset()
        return await self.init()

    async def _activate(self, detail: AttemptDetail) -> None:
        assert self.assessment is not None
        self.attempt = detail.attempt
        self.questions = tuple(detail.questions) or self.assessment.questions
        self.store = AnswerStore(self.questions)
        loaded = self.store.rehydrate(detail.attempt.answers)
        if loaded:
            await self._emit("rehydrated", detail=str(loaded))
        self.navigator = Navigator(self.questions, self._save_point)
        self.clock = self._make_clock()
        self.result = None
        self.awaiting_confirmation = False
        await self._set_phase(Phase.ACTIVE)
        self.clock.start()

    def _make_clock(self) -> DeadlineClock:
        assert self.attempt is not None and self.assessment is not None
        return DeadlineClock(
            self.attempt.started_at,
            self.assessment.time_limit_minutes,
            on_timeout=self._on_timeout,
            now=self._now,
            tick_s=self._tick_s,
        )

    def close(self) -> None:
        if self.clock is not None:
            self.clock.stop()

    # ---------------- answering ----------------
    @property
    def current_question(self) -> Question | None:
        if self.navigator is None:
            return None
        return self.navigator.current

    def set_answer(self, answer: Answer) -> None:
        if self.phase != Phase.ACTIVE or self.store is None:
            raise ReadOnlyError(f"answers are read-only in {self.phase.value}")
        question = self.current_question
        if question is None:
            raise ReadOnlyError("no question is displayed")
        self.store.write(question.id, answer)
        self.awaiting_confirmation = False

    def choose_option(self, option_id: str) -> None:
        self.set_answer(ChoiceAnswer.single(option_id))

    def write_text(self, text: str) -> None:
        self.set_answer(TextAnswer(text))

    def current_answer(self) -> Answer | None:
        question = self.current_question
        if question is None or self.store is None:
            return None
        return self.store.get(question.id)

    # ---------------- navigation ----------------
    async def next(self) -> bool:
        self._require_active()
        self.awaiting_confirmation = False
        return await self.navigator.next()

    async def prev(self) -> bool:
        self._require_active()
        self.awaiting_confirmation = False
        return await self.navigator.prev()

    def _require_active(self) -> None:
        if self.phase != Phase.ACTIVE or self.navigator is None:
            raise InvalidTransition(f"navigation is not possible in {self.phase.value}")

    async def _save_point(self, question: Question) -> None:
        if self.store is None or self.attempt is None or self.phase == Phase.FINISHED:
            return
        answer = self.store.pending(question.id)
        if answer is None:
            return
        saved = await self._attempts.save_answer(self.attempt.id, question.id, answer)
        if saved.ok:
            self.store.mark_persisted(question.id, answer)
            await self._emit("saved", question_id=question.id)
            return
        await self._emit(
            "save_failed",
            level="warning",
            detail=self._failure_text(saved.failure),
            question_id=question.id,
        )

    async def _flush_drafts(self) -> None:
        if self.store is None:
            return
        by_id = {q.id: q for q in self.questions}
        current = self.current_question
        order = self.store.drafts()
        if current is not None and current.id in order:
            order.remove(current.id)
            order.insert(0, current.id)
        for qid in order:
            await self._save_point(by_id[qid])

    async def _bounded_flush(self) -> None:
        try:
            await asyncio.wait_for(self._flush_drafts(), timeout=self._flush_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(
                "flush_timed_out attempt_id=%s timeout_s=%s",
                self.attempt.id if self.attempt else None,
                self._flush_timeout_s,
            )
            await self._emit("save_failed", level="warning", detail="flush timed out")

    # ---------------- submission ----------------
    async def submit(self, confirmed: bool = False, *, automatic: bool = False) -> SubmitOutcome:
        if self.phase != Phase.ACTIVE or self.attempt is None:
            return SubmitOutcome.IGNORED
        if not confirmed and not automatic:
            current = self.current_question
            if current is not None:
                await self._save_point(current)
            if self.phase != Phase.ACTIVE:
                return SubmitOutcome.IGNORED
            self.awaiting_confirmation = True
            return SubmitOutcome.CONFIRMATION_REQUIRED

        self.awaiting_confirmation = False
        await self._set_phase(Phase.SUBMITTING)
        if self.clock is not None:
            self.clock.stop()
        if automatic:
            await self._emit("timeout", level="warning")
        await self._bounded_flush()

        submitted = await self._attempts.submit_attempt(self.attempt.id)
        if submitted.ok:
            self.result = submitted.value
            if self.store is not None:
                self.store.finalize()
            await self._set_phase(Phase.FINISHED)
            await self._emit("finished")
            return SubmitOutcome.SUBMITTED

        await self._set_phase(Phase.ACTIVE)
        await self._emit("submit_failed", level="error", detail=self._failure_text(submitted.failure))
        self._restart_clock()
        return SubmitOutcome.FAILED

    def cancel_submit(self) -> None:
        self.awaiting_confirmation = False

    def _restart_clock(self) -> None:
        if self.attempt is None or self.assessment is None or not self.assessment.is_timed:
            return
        self.clock = self._make_clock()
        # past the deadline the new clock fires again after a pause
        delay = self._submit_retry_s if self.clock.expired() else 0.0
        self.clock.start(delay=delay)

    async def _on_timeout(self) -> None:
        await self.submit(automatic=True)

    # ---------------- observation ----------------
    def remaining_seconds(self) -> int | None:
        if self.clock is not None:
            return self.clock.remaining_seconds()
        if self.assessment is not None and self.assessment.time_limit_minutes:
            return self.assessment.time_limit_minutes * 60
        return None

    def view(self) -> SessionView:
        notices = [e for e in self.events if e.level != "info"]
        navigator = self.navigator
        return SessionView(
            phase=self.phase,
            assessment=self.assessment,
            remaining_seconds=self.remaining_seconds(),
            index=navigator.index if navigator else 0,
            total=navigator.total if navigator else (self.assessment.question_count if self.assessment else 0),
            question=self.current_question,
            draft=self.current_answer(),
            awaiting_confirmation=self.awaiting_confirmation,
            result=self.result,
            answered=len(self.store) if self.store else 0,
            last_notice=notices[-1] if notices else None,
        )
