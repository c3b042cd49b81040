from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence

from .types import Question

SavePoint = Callable[[Question], Awaitable[None]]


class Navigator:
    def __init__(self, questions: Sequence[Question], save_point: SavePoint) -> None:
        self._questions = tuple(questions)
        self._save_point = save_point
        self._index = 0
        self._lock = asyncio.Lock()

    @property
    def index(self) -> int:
        return self._index

    @property
    def total(self) -> int:
        return len(self._questions)

    @property
    def position(self) -> int:
        return self._index + 1 if self._questions else 0

    @property
    def current(self) -> Question | None:
        if not self._questions:
            return None
        return self._questions[self._index]

    @property
    def is_first(self) -> bool:
        return self._index == 0

    @property
    def is_last(self) -> bool:
        return not self._questions or self._index == len(self._questions) - 1

    @property
    def progress(self) -> float:
        if not self._questions:
            return 0.0
        return self._index / len(self._questions)

    def reset(self) -> None:
        self._index = 0

    async def next(self) -> bool:
        return await self._move(1)

    async def prev(self) -> bool:
        return await self._move(-1)

    async def _move(self, step: int) -> bool:
        async with self._lock:
            leaving = self.current
            if leaving is None:
                return False
            await self._save_point(leaving)
            target = min(max(self._index + step, 0), len(self._questions) - 1)
            if target == self._index:
                return False
            self._index = target
            return True
