from __future__ import annotations
import asyncio
import datetime as dt
import logging

from aiogram import Bot, Dispatcher, F
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command, CommandStart
from aiogram.types import CallbackQuery, Message
from aiogram.types import User as TgUser
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from .config import Settings
from .engine.errors import InvalidTransition, ReadOnlyError, WrongAnswerShape
from .engine.session import AttemptSession, SubmitOutcome
from .engine.types import Phase, SessionEvent
from .i18n import t
from .models import Learner, utcnow
from .render import Affordance, Rendered, affordance_for, esc_md2, render_assessment_list, render_notice, render_view
from .services.factory import make_services

logger = logging.getLogger(__name__)

class SessionRegistry:
    """Live attempt sessions, one per learner."""

    def __init__(self) -> None:
        self._sessions: dict[int, AttemptSession] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, learner_id: int) -> AttemptSession | None:
        return self._sessions.get(learner_id)

    def put(self, learner_id: int, session: AttemptSession) -> None:
        old = self._sessions.get(learner_id)
        if old is not None and old is not session:
            old.close()
        self._sessions[learner_id] = session

    def drop(self, learner_id: int) -> None:
        old = self._sessions.pop(learner_id, None)
        if old is not None:
            old.close()

    def lock(self, learner_id: int) -> asyncio.Lock:
        lock = self._locks.get(learner_id)
        if lock is None:
            lock = self._locks[learner_id] = asyncio.Lock()
        return lock

    def close_all(self) -> None:
        for learner_id in list(self._sessions):
            self.drop(learner_id)

    def __len__(self) -> int:
        return len(self._sessions)

class _ChatRelay:
    """Forwards session events to the learner's chat.

    Results and failures of an automatic (deadline) submission are sent as
    new messages because no learner action is waiting for them.
    """

    def __init__(
        self,
        bot: Bot,
        chat_id: int,
        ui_lang: str,
        sessionmaker: async_sessionmaker[AsyncSession],
    ) -> None:
        self._bot = bot
        self.chat_id = chat_id
        self.ui_lang = ui_lang
        self._sessionmaker = sessionmaker
        self.session: AttemptSession | None = None
        self._automatic = False

    async def _send(self, rendered: Rendered) -> None:
        text, markup = rendered
        await self._bot.send_message(self.chat_id, text, reply_markup=markup, parse_mode=ParseMode.MARKDOWN_V2)

    async def __call__(self, event: SessionEvent) -> None:
        if event.kind == "timeout":
            self._automatic = True
        notice = render_notice(event, self.ui_lang)
        if notice:
            await self._bot.send_message(self.chat_id, notice, parse_mode=ParseMode.MARKDOWN_V2)
        if event.kind == "finished":
            await _set_current_assessment(self._sessionmaker, self.chat_id, None)
        if event.kind in ("finished", "submit_failed") and self._automatic:
            self._automatic = False
            if self.session is not None:
                await self._send(render_view(self.session.view(), self.ui_lang))

async def _get_or_create_learner(s: AsyncSession, tg_user: TgUser, default_lang: str) -> Learner:
    learner = await s.get(Learner, tg_user.id)
    if learner:
        return learner
    learner = Learner(
        id=tg_user.id,
        username=tg_user.username,
        first_name=tg_user.first_name,
        ui_lang=default_lang,
    )
    s.add(learner)
    await s.commit()
    return learner

async def _set_current_assessment(
    sessionmaker: async_sessionmaker[AsyncSession],
    learner_id: int,
    assessment_id: str | None,
) -> None:
    async with sessionmaker() as s:
        learner = await s.get(Learner, learner_id)
        if not learner:
            return
        learner.current_assessment_id = assessment_id
        learner.updated_at = utcnow()
        await s.commit()

async def open_session(
    bot: Bot,
    *,
    settings: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    registry: SessionRegistry,
    learner: Learner,
    assessment_id: str,
) -> AttemptSession:
    attempts, catalog = make_services(settings, sessionmaker, learner.id, learner.api_token)
    relay = _ChatRelay(bot, learner.id, learner.ui_lang, sessionmaker)
    session = AttemptSession(
        assessment_id,
        attempts=attempts,
        catalog=catalog,
        listener=relay,
        tick_s=settings.tick_s,
        flush_timeout_s=settings.flush_timeout_s,
        submit_retry_s=settings.submit_retry_s,
    )
    relay.session = session
    registry.put(learner.id, session)
    await session.init()
    logger.info(
        "session_opened learner_id=%s assessment_id=%s phase=%s",
        learner.id,
        assessment_id,
        session.phase.value,
    )
    return session

async def _edit(message: Message, rendered: Rendered) -> None:
    text, markup = rendered
    try:
        await message.edit_text(text, reply_markup=markup, parse_mode=ParseMode.MARKDOWN_V2)
    except TelegramBadRequest as exc:
        if "message is not modified" in str(exc):
            return
        logger.warning("edit_failed chat_id=%s error=%s", message.chat.id, exc)
        await message.answer(text, reply_markup=markup, parse_mode=ParseMode.MARKDOWN_V2)

async def _reply(message: Message, rendered: Rendered) -> None:
    text, markup = rendered
    await message.answer(text, reply_markup=markup, parse_mode=ParseMode.MARKDOWN_V2)

async def resume_active_learners_on_startup(
    bot: Bot,
    *,
    settings: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    registry: SessionRegistry,
    throttle_s: float = 0.05,
    recovery_window: dt.timedelta | None = None,
) -> None:
    window = recovery_window or dt.timedelta(minutes=30)
    now = utcnow()
    cutoff = now - window
    async with sessionmaker() as s:
        q = select(Learner.id).where(Learner.current_assessment_id.is_not(None))
        learner_ids = (await s.execute(q)).scalars().all()
    logger.info("startup_recovery: candidates=%s", len(learner_ids))
    if not learner_ids:
        return

    resumed = 0
    idle = 0
    failed = 0
    for learner_id in learner_ids:
        async with sessionmaker() as s:
            learner = await s.get(Learner, learner_id)
        if not learner or not learner.current_assessment_id:
            continue
        if learner.recovered_at:
            recovered_at = learner.recovered_at
            if recovered_at.tzinfo is None:
                recovered_at = recovered_at.replace(tzinfo=dt.timezone.utc)
            if recovered_at >= cutoff:
                continue
        assessment_id = learner.current_assessment_id
        try:
            session = await open_session(
                bot,
                settings=settings,
                sessionmaker=sessionmaker,
                registry=registry,
                learner=learner,
                assessment_id=assessment_id,
            )
            if session.phase == Phase.NO_ATTEMPT:
                # nothing in progress anymore
                registry.drop(learner_id)
                await _set_current_assessment(sessionmaker, learner_id, None)
                idle += 1
            else:
                text, markup = render_view(session.view(), learner.ui_lang)
                await bot.send_message(learner_id, text, reply_markup=markup, parse_mode=ParseMode.MARKDOWN_V2)
                resumed += 1
            async with sessionmaker() as s:
                row = await s.get(Learner, learner_id)
                if row:
                    row.recovered_at = now
                    row.updated_at = utcnow()
                    await s.commit()
        except Exception:
            failed += 1
            logger.exception(
                "startup_recovery_failed learner_id=%s assessment_id=%s",
                learner_id,
                assessment_id,
            )
        if throttle_s:
            await asyncio.sleep(throttle_s)
    logger.info(
        "startup_recovery: resumed=%s idle=%s failed=%s",
        resumed,
        idle,
        failed,
    )

def register_handlers(
    dp: Dispatcher,
    *,
    settings: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    registry: SessionRegistry | None = None,
) -> SessionRegistry:
    registry = registry if registry is not None else SessionRegistry()

    async def _open(bot: Bot, tg_user: TgUser, assessment_id: str) -> tuple[AttemptSession, str]:
        async with sessionmaker() as s:
            learner = await _get_or_create_learner(s, tg_user, settings.ui_default_lang)
            learner.current_assessment_id = assessment_id
            learner.updated_at = utcnow()
            await s.commit()
        session = await open_session(
            bot,
            settings=settings,
            sessionmaker=sessionmaker,
            registry=registry,
            learner=learner,
            assessment_id=assessment_id,
        )
        return session, learner.ui_lang

    async def _ui_lang(learner_id: int) -> str:
        async with sessionmaker() as s:
            learner = await s.get(Learner, learner_id)
            return learner.ui_lang if learner else settings.ui_default_lang

    async def _session_or_alert(c: CallbackQuery) -> AttemptSession | None:
        session = registry.get(c.from_user.id)
        if session is None:
            await c.answer(t("no_session", await _ui_lang(c.from_user.id)), show_alert=True)
        return session

    @dp.message(CommandStart())
    async def on_start(m: Message):
        arg = None
        if m.text and len(m.text.split()) > 1:
            arg = m.text.split(maxsplit=1)[1].strip()
        if arg:
            session, ui_lang = await _open(m.bot, m.from_user, arg)
            await _reply(m, render_view(session.view(), ui_lang))
            return
        async with sessionmaker() as s:
            learner = await _get_or_create_learner(s, m.from_user, settings.ui_default_lang)
        _attempts, catalog = make_services(settings, sessionmaker, learner.id, learner.api_token)
        listed = await catalog.list_assessments()
        if not listed.ok:
            await m.answer(esc_md2(t("load_error", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        await _reply(m, render_assessment_list(listed.value, learner.ui_lang))

    @dp.message(Command("token"))
    async def on_token(m: Message):
        parts = (m.text or "").split(maxsplit=1)
        async with sessionmaker() as s:
            learner = await _get_or_create_learner(s, m.from_user, settings.ui_default_lang)
            if len(parts) < 2 or not parts[1].strip():
                await m.answer(esc_md2(t("token_usage", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
                return
            learner.api_token = parts[1].strip()
            learner.updated_at = utcnow()
            await s.commit()
        # sessions keep the client they were built with
        registry.drop(learner.id)
        logger.info("learner_token_updated learner_id=%s", learner.id)
        await m.answer(esc_md2(t("token_saved", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.message(Command("cancel"))
    async def on_cancel(m: Message):
        registry.drop(m.from_user.id)
        await _set_current_assessment(sessionmaker, m.from_user.id, None)
        await m.answer(esc_md2(t("cancelled", await _ui_lang(m.from_user.id))), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.callback_query(F.data.startswith("open:"))
    async def on_open(c: CallbackQuery):
        assessment_id = c.data.split(":", 1)[1]
        session, ui_lang = await _open(c.bot, c.from_user, assessment_id)
        await _edit(c.message, render_view(session.view(), ui_lang))
        await c.answer()

    @dp.callback_query(F.data == "begin")
    async def on_begin(c: CallbackQuery):
        session = await _session_or_alert(c)
        if session is None:
            return
        ui_lang = await _ui_lang(c.from_user.id)
        async with registry.lock(c.from_user.id):
            try:
                await session.start()
            except InvalidTransition:
                logger.info("begin_ignored learner_id=%s phase=%s", c.from_user.id, session.phase.value)
        await _edit(c.message, render_view(session.view(), ui_lang))
        await c.answer()

    @dp.callback_query(F.data.startswith("pick:"))
    async def on_pick(c: CallbackQuery):
        session = await _session_or_alert(c)
        if session is None:
            return
        ui_lang = await _ui_lang(c.from_user.id)
        question = session.current_question
        try:
            idx = int(c.data.split(":", 1)[1])
        except ValueError:
            await c.answer()
            return
        if question is None or affordance_for(question) != Affordance.SINGLE_CHOICE or not 0 <= idx < len(question.options):
            await c.answer()
            return
        try:
            session.choose_option(question.options[idx].id)
        except ReadOnlyError:
            await c.answer(t("read_only", ui_lang), show_alert=True)
            return
        await _edit(c.message, render_view(session.view(), ui_lang))
        await c.answer()

    @dp.callback_query(F.data.in_({"nav:prev", "nav:next"}))
    async def on_nav(c: CallbackQuery):
        session = await _session_or_alert(c)
        if session is None:
            return
        ui_lang = await _ui_lang(c.from_user.id)
        async with registry.lock(c.from_user.id):
            try:
                if c.data == "nav:next":
                    await session.next()
                else:
                    await session.prev()
            except InvalidTransition:
                logger.info("nav_ignored learner_id=%s phase=%s", c.from_user.id, session.phase.value)
        await _edit(c.message, render_view(session.view(), ui_lang))
        await c.answer()

    @dp.callback_query(F.data == "submit")
    async def on_submit(c: CallbackQuery):
        session = await _session_or_alert(c)
        if session is None:
            return
        ui_lang = await _ui_lang(c.from_user.id)
        async with registry.lock(c.from_user.id):
            await session.submit()
        await _edit(c.message, render_view(session.view(), ui_lang))
        await c.answer()

    @dp.callback_query(F.data.in_({"submit:yes", "submit:no"}))
    async def on_submit_confirm(c: CallbackQuery):
        session = await _session_or_alert(c)
        if session is None:
            return
        ui_lang = await _ui_lang(c.from_user.id)
        if c.data == "submit:no":
            session.cancel_submit()
            await _edit(c.message, render_view(session.view(), ui_lang))
            await c.answer()
            return
        async with registry.lock(c.from_user.id):
            outcome = await session.submit(confirmed=True)
        logger.info("submit_requested learner_id=%s outcome=%s", c.from_user.id, outcome.value)
        if outcome == SubmitOutcome.IGNORED and session.phase == Phase.SUBMITTING:
            await c.answer(t("submitting", ui_lang))
            return
        await _edit(c.message, render_view(session.view(), ui_lang))
        await c.answer()

    @dp.callback_query(F.data == "retry")
    async def on_retry(c: CallbackQuery):
        session = await _session_or_alert(c)
        if session is None:
            return
        ui_lang = await _ui_lang(c.from_user.id)
        async with registry.lock(c.from_user.id):
            try:
                await session.retry()
            except InvalidTransition:
                logger.info("retry_ignored learner_id=%s phase=%s", c.from_user.id, session.phase.value)
        await _edit(c.message, render_view(session.view(), ui_lang))
        await c.answer()

    # ---------- free text answers ----------
    @dp.message(F.text & ~F.text.startswith("/"))
    async def on_text(m: Message):
        session = registry.get(m.from_user.id)
        ui_lang = await _ui_lang(m.from_user.id)
        if session is None:
            await m.answer(esc_md2(t("no_session", ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        question = session.current_question
        if question is not None and affordance_for(question) == Affordance.SINGLE_CHOICE:
            await m.answer(esc_md2(t("wrong_answer_kind", ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        try:
            session.write_text(m.text or "")
        except ReadOnlyError:
            await m.answer(esc_md2(t("read_only", ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        except WrongAnswerShape:
            await m.answer(esc_md2(t("wrong_answer_kind", ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        await _reply(m, render_view(session.view(), ui_lang))

    return registry
