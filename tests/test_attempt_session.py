import asyncio
import datetime as dt

import pytest

from examiner.engine.errors import InvalidTransition, ReadOnlyError
from examiner.engine.session import AttemptSession, SubmitOutcome
from examiner.engine.types import ChoiceAnswer, DraftStatus, Phase, TextAnswer

from tests.fakes import T0, FakeAttemptService, FakeCatalog, FakeNow, assessment, mcq, short, wait_until


def _make(*questions, minutes=None, **session_kwargs):
    now = FakeNow()
    a = assessment(*questions, minutes=minutes)
    service = FakeAttemptService(a.questions, now=now)
    catalog = FakeCatalog(a)
    session = AttemptSession(
        a.id,
        attempts=service,
        catalog=catalog,
        now=now,
        tick_s=session_kwargs.pop("tick_s", 0.005),
        **session_kwargs,
    )
    return session, service, catalog, now


def _kinds(session, kind):
    return [e for e in session.events if e.kind == kind]


def _phases_since(session, marker):
    return [e.phase for e in list(session.events)[marker:] if e.kind == "phase"]


def test_init_without_attempt_offers_start():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"), short("q2"))
        assert await session.init() == Phase.NO_ATTEMPT
        assert session.assessment.title == "Python basics"
        view = session.view()
        assert view.phase == Phase.NO_ATTEMPT
        assert view.total == 2
        assert view.question is None

        assert await session.start() == Phase.ACTIVE
        assert session.attempt.id == "att-1"
        assert session.current_question.id == "q1"
        assert _kinds(session, "started")
        with pytest.raises(InvalidTransition):
            await session.start()

    asyncio.run(_run())


def test_resume_rehydrates_saved_answers_at_first_question():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"), short("q2"), short("q3"), short("q4"))
        service.add_attempt(
            "att-7",
            answers={
                "q1": ChoiceAnswer.single("optB"),
                "q2": TextAnswer("two"),
                "q4": TextAnswer("four"),
            },
        )
        assert await session.init() == Phase.ACTIVE
        view = session.view()
        assert view.answered == 3
        assert view.index == 0
        assert view.draft == ChoiceAnswer.single("optB")
        assert session.store.status("q4") == DraftStatus.PERSISTED
        assert session.store.get("q3") is None
        assert [e.phase for e in session.events if e.kind == "phase"] == [Phase.RESUMING, Phase.ACTIVE]
        assert _kinds(session, "resumed")[0].detail == "3"

    asyncio.run(_run())


def test_unsaved_answer_is_lost_on_reload_of_untimed_attempt():
    async def _run():
        session, service, catalog, now = _make(mcq("q1"), short("q2"))
        await session.init()
        await session.start()
        session.choose_option("optA")
        await session.next()
        session.write_text("not saved yet")
        session.close()

        reloaded = AttemptSession("A1", attempts=service, catalog=catalog, now=now)
        assert await reloaded.init() == Phase.ACTIVE
        assert reloaded.attempt.id == session.attempt.id
        assert reloaded.store.get("q1") == ChoiceAnswer.single("optA")
        assert reloaded.store.get("q2") is None
        assert reloaded.remaining_seconds() is None

    asyncio.run(_run())


def test_answers_are_read_only_outside_active():
    async def _run():
        session, _service, _catalog, _now = _make(short("q1"))
        await session.init()
        with pytest.raises(ReadOnlyError):
            session.write_text("too early")
        with pytest.raises(InvalidTransition):
            await session.next()
        await session.start()
        session.write_text("done")
        assert await session.submit(confirmed=True) == SubmitOutcome.SUBMITTED
        with pytest.raises(ReadOnlyError):
            session.write_text("too late")

    asyncio.run(_run())


def test_submit_requires_confirmation_and_saves_visible_question():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"), short("q2"))
        await session.init()
        await session.start()
        session.choose_option("optC")
        assert await session.submit() == SubmitOutcome.CONFIRMATION_REQUIRED
        assert session.awaiting_confirmation
        assert session.phase == Phase.ACTIVE
        assert service.saved["att-1"] == {"q1": ChoiceAnswer.single("optC")}
        assert service.submit_calls == []

        session.cancel_submit()
        assert not session.awaiting_confirmation
        assert await session.submit() == SubmitOutcome.CONFIRMATION_REQUIRED
        session.choose_option("optA")
        assert not session.awaiting_confirmation

        assert await session.submit(confirmed=True) == SubmitOutcome.SUBMITTED
        assert service.submitted["att-1"] == {"q1": ChoiceAnswer.single("optA")}
        assert session.phase == Phase.FINISHED
        assert session.result.score == 80.0
        assert session.store.status("q1") == DraftStatus.FINAL

    asyncio.run(_run())


def test_double_submit_sends_one_request():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"), minutes=30)
        await session.init()
        await session.start()
        service.submit_gate = asyncio.Event()

        first = asyncio.create_task(session.submit(confirmed=True))
        assert await wait_until(lambda: service.submit_calls)
        assert session.phase == Phase.SUBMITTING
        assert await session.submit(confirmed=True) == SubmitOutcome.IGNORED
        # a deadline firing now takes the same guarded path
        assert await session.submit(automatic=True) == SubmitOutcome.IGNORED
        with pytest.raises(ReadOnlyError):
            session.choose_option("optB")

        service.submit_gate.set()
        assert await first == SubmitOutcome.SUBMITTED
        assert service.submit_calls == ["att-1"]
        session.close()

    asyncio.run(_run())


def test_failed_submit_returns_to_active_then_retry_succeeds():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"), short("q2"))
        await session.init()
        await session.start()
        session.choose_option("optA")
        await session.next()
        session.write_text("hello")
        service.fail_submits = 1
        marker = len(session.events)

        assert await session.submit(confirmed=True) == SubmitOutcome.FAILED
        assert session.phase == Phase.ACTIVE
        before = session.store.snapshot()
        failure = _kinds(session, "submit_failed")[0]
        assert failure.level == "error"
        assert failure.detail == "submit failed"
        assert session.view().last_notice == failure
        session.write_text("hello")

        assert await session.submit(confirmed=True) == SubmitOutcome.SUBMITTED
        assert session.store.snapshot() == before
        assert service.submitted["att-1"] == before
        assert _phases_since(session, marker) == [
            Phase.SUBMITTING,
            Phase.ACTIVE,
            Phase.SUBMITTING,
            Phase.FINISHED,
        ]
        assert len(service.submit_calls) == 2

    asyncio.run(_run())


def test_timeout_submits_answers_automatically_once():
    async def _run():
        session, service, _catalog, now = _make(mcq("q1"), short("q2"), minutes=1)
        await session.init()
        await session.start()
        assert session.remaining_seconds() == 60

        session.choose_option("optA")
        await session.next()
        assert service.saved["att-1"] == {"q1": ChoiceAnswer.single("optA")}
        session.write_text("hello")

        now.advance(59)
        await asyncio.sleep(0.02)
        assert session.phase == Phase.ACTIVE

        now.advance(1)
        assert await wait_until(lambda: session.phase == Phase.FINISHED)
        await asyncio.sleep(0.02)
        assert len(_kinds(session, "timeout")) == 1
        assert service.submit_calls == ["att-1"]
        assert service.submitted["att-1"] == {
            "q1": ChoiceAnswer.single("optA"),
            "q2": TextAnswer("hello"),
        }
        assert session.view().remaining_seconds == 0

    asyncio.run(_run())


def test_timeout_does_not_wait_for_a_hanging_save():
    async def _run():
        session, service, _catalog, now = _make(short("q1"), minutes=1, flush_timeout_s=0.05)
        await session.init()
        await session.start()
        session.write_text("draft")
        service.save_gate = asyncio.Event()

        now.advance(61)
        assert await wait_until(lambda: session.phase == Phase.FINISHED)
        assert service.submit_calls == ["att-1"]
        assert any(e.detail == "flush timed out" for e in _kinds(session, "save_failed"))

    asyncio.run(_run())


def test_failed_automatic_submit_is_retried():
    async def _run():
        session, service, _catalog, now = _make(short("q1"), minutes=1, submit_retry_s=0.05)
        await session.init()
        await session.start()
        service.fail_submits = 1
        now.advance(90)

        assert await wait_until(lambda: session.phase == Phase.FINISHED)
        assert len(service.submit_calls) == 2
        assert len(_kinds(session, "timeout")) == 2
        assert len(_kinds(session, "submit_failed")) == 1

    asyncio.run(_run())


def test_resume_after_deadline_submits_immediately():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"), minutes=1)
        service.add_attempt(
            "att-3",
            started_at=T0 - dt.timedelta(minutes=5),
            answers={"q1": ChoiceAnswer.single("optB")},
        )
        await session.init()
        assert session.remaining_seconds() == 0
        assert await wait_until(lambda: session.phase == Phase.FINISHED)
        assert service.submitted["att-3"] == {"q1": ChoiceAnswer.single("optB")}

    asyncio.run(_run())


def test_failed_save_keeps_draft_and_is_flushed_on_submit():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"), short("q2"))
        await session.init()
        await session.start()
        session.choose_option("optB")
        service.fail_saves = 1

        assert await session.next() is True
        assert session.current_question.id == "q2"
        assert session.store.status("q1") == DraftStatus.DRAFT
        notice = session.view().last_notice
        assert notice.kind == "save_failed" and notice.question_id == "q1"

        assert await session.submit(confirmed=True) == SubmitOutcome.SUBMITTED
        assert service.submitted["att-1"] == {"q1": ChoiceAnswer.single("optB")}

    asyncio.run(_run())


def test_load_failure_enters_error_and_retry_recovers():
    async def _run():
        session, _service, catalog, _now = _make(mcq("q1"))
        catalog.failures = 1
        assert await session.init() == Phase.ERROR
        assert session.assessment is None
        assert _kinds(session, "load_failed")[0].detail == "catalog unavailable"
        with pytest.raises(InvalidTransition):
            await session.start()

        assert await session.retry() == Phase.NO_ATTEMPT
        with pytest.raises(InvalidTransition):
            await session.retry()

    asyncio.run(_run())


def test_unknown_assessment_is_a_load_failure():
    async def _run():
        session, _service, catalog, _now = _make(mcq("q1"))
        catalog.assessments.clear()
        assert await session.init() == Phase.ERROR

    asyncio.run(_run())


def test_resume_lookup_failure_falls_back_to_start():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"))
        service.fail_list = True
        assert await session.init() == Phase.NO_ATTEMPT
        assert _kinds(session, "resume_failed")[0].level == "warning"

        service.fail_list = False
        service.add_attempt("att-9")
        service.fail_detail = 1
        session2 = AttemptSession("A1", attempts=service, catalog=FakeCatalog(assessment(mcq("q1"))))
        assert await session2.init() == Phase.NO_ATTEMPT
        assert [e.phase for e in session2.events if e.kind == "phase"] == [Phase.RESUMING, Phase.NO_ATTEMPT]

    asyncio.run(_run())


def test_start_failure_keeps_no_attempt():
    async def _run():
        session, service, _catalog, _now = _make(mcq("q1"))
        await session.init()
        service.fail_start = True
        assert await session.start() == Phase.NO_ATTEMPT
        assert _kinds(session, "start_failed")

        service.fail_start = False
        service.fail_detail = 1
        assert await session.start() == Phase.ERROR
        assert await session.retry() == Phase.ACTIVE

    asyncio.run(_run())


def test_listener_errors_do_not_break_the_session():
    async def _run():
        seen = []

        async def listener(event):
            seen.append(event.kind)
            raise RuntimeError("chat is gone")

        a = assessment(short("q1"))
        service = FakeAttemptService(a.questions)
        session = AttemptSession(a.id, attempts=service, catalog=FakeCatalog(a), listener=listener)
        await session.init()
        await session.start()
        assert session.phase == Phase.ACTIVE
        assert "started" in seen

    asyncio.run(_run())


def test_slow_timeout_notice_does_not_leave_answers_editable():
    async def _run():
        gate = asyncio.Event()
        seen = []

        async def listener(event):
            seen.append(event.kind)
            if event.kind == "timeout":
                await gate.wait()

        now = FakeNow()
        a = assessment(short("q1"), minutes=1)
        service = FakeAttemptService(a.questions, now=now)
        session = AttemptSession(
            a.id, attempts=service, catalog=FakeCatalog(a), listener=listener, now=now, tick_s=0.005
        )
        await session.init()
        await session.start()
        session.write_text("before deadline")

        now.advance(61)
        assert await wait_until(lambda: "timeout" in seen)
        assert session.phase == Phase.SUBMITTING
        with pytest.raises(ReadOnlyError):
            session.write_text("after deadline")

        gate.set()
        assert await wait_until(lambda: session.phase == Phase.FINISHED)
        assert service.submitted["att-1"] == {"q1": TextAnswer("before deadline")}

    asyncio.run(_run())
