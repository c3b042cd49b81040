import asyncio

from examiner.engine.navigator import Navigator

from tests.fakes import mcq, short


def _questions():
    return [mcq("q1"), short("q2"), short("q3")]


def test_next_saves_the_question_being_left():
    async def _run():
        saved = []

        async def save_point(question):
            saved.append((question.id, nav.index))

        nav = Navigator(_questions(), save_point)
        assert nav.current.id == "q1"
        assert nav.is_first and not nav.is_last
        assert await nav.next() is True
        assert await nav.next() is True
        assert saved == [("q1", 0), ("q2", 1)]
        assert nav.current.id == "q3"
        assert nav.is_last
        assert nav.position == 3

    asyncio.run(_run())


def test_prev_saves_before_moving_back():
    async def _run():
        saved = []

        async def save_point(question):
            saved.append(question.id)

        nav = Navigator(_questions(), save_point)
        await nav.next()
        assert await nav.prev() is True
        assert saved == ["q1", "q2"]
        assert nav.index == 0

    asyncio.run(_run())


def test_edges_save_but_do_not_move():
    async def _run():
        saved = []

        async def save_point(question):
            saved.append(question.id)

        nav = Navigator(_questions(), save_point)
        assert await nav.prev() is False
        assert nav.index == 0
        await nav.next()
        await nav.next()
        assert await nav.next() is False
        assert nav.index == 2
        assert saved == ["q1", "q1", "q2", "q3"]

    asyncio.run(_run())


def test_moves_are_serialized():
    async def _run():
        gate = asyncio.Event()
        saved = []

        async def save_point(question):
            saved.append(question.id)
            await gate.wait()

        nav = Navigator(_questions(), save_point)
        first = asyncio.create_task(nav.next())
        second = asyncio.create_task(nav.next())
        await asyncio.sleep(0.01)
        assert saved == ["q1"]
        gate.set()
        await asyncio.gather(first, second)
        assert saved == ["q1", "q2"]
        assert nav.index == 2

    asyncio.run(_run())


def test_empty_navigator():
    async def _run():
        async def save_point(question):
            raise AssertionError("no question to save")

        nav = Navigator([], save_point)
        assert nav.current is None
        assert nav.position == 0
        assert await nav.next() is False

    asyncio.run(_run())
