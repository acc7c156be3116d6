"""Ordered multi-step procedures with a single completion."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Union, cast

from bluemirror.core.errors import ErrorKind, OperationError
from bluemirror.core.pending import Completion, spawn

LOGGER = logging.getLogger(__name__)

Step = Union[Completion, Sequence[Completion], Callable[[list[Any]], Any]]


class Job(Completion):
    """Runs steps in order and reports one aggregate outcome.

    A step is an already issued call or job, a sequence of them (fan-out), or
    a callable that receives the results of all earlier steps and returns one
    of those. A callable may also return a plain value, which becomes the
    step result as is, or raise :class:`OperationError` to fail the job.

    The first failing step decides the outcome. Members that are already in
    flight, including pre-issued later steps, are drained before the failure
    is reported. Lazy later steps are never issued.
    """

    def __init__(
        self,
        steps: Iterable[Step] = (),
        *,
        description: str = "",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__(loop=loop)
        self.description = description or type(self).__name__
        self.results: list[Any] = []
        self.failed_step: int | None = None
        self._steps: list[Step] = list(steps)
        self._task: asyncio.Task[Any] | None = None
        self._abandoned = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.description} {self.state.value}>"

    def add_step(self, step: Step) -> Job:
        if self._task is not None:
            raise RuntimeError(f"{self.description} already started")
        self._steps.append(step)
        return self

    def start(self) -> Job:
        if self._task is None and not self._abandoned:
            self._task = spawn(self._run(), loop=self._get_loop())
        return self

    def is_started(self) -> bool:
        return self._task is not None

    def is_abandoned(self) -> bool:
        return self._abandoned

    def abandon(self) -> None:
        """Stop issuing steps; calls in flight finish but nothing is reported."""
        if not self.is_finished():
            LOGGER.debug("%s abandoned", self.description)
        self._abandoned = True

    async def wait(self) -> Completion:
        self.start()
        return await super().wait()

    def _result_value(self) -> Any:
        return self.results[-1] if self.results else None

    async def _run(self) -> None:
        for index, step in enumerate(self._steps):
            if self._abandoned:
                return
            try:
                members, fan_out, value = self._issue(step)
            except OperationError as exc:
                await self._drain(index + 1)
                self._report(index, exc.kind, exc.text)
                return
            except Exception as exc:
                LOGGER.exception("Step %d of %s raised", index, self.description)
                await self._drain(index + 1)
                self._report(index, ErrorKind.INTERNAL_ERROR, str(exc))
                return

            if members is not None:
                await asyncio.gather(*(member.wait() for member in members))
                if self._abandoned:
                    return
                failed = next((m for m in members if m.is_error()), None)
                if failed is not None:
                    await self._drain(index + 1)
                    self._report(index, cast(ErrorKind, failed.error), failed.error_text)
                    return
                value = [m.value for m in members] if fan_out else members[0].value

            LOGGER.debug("%s step %d done", self.description, index)
            self.results.append(value)

        if not self._abandoned:
            self._succeed(self._result_value())

    def _issue(self, step: Step) -> tuple[list[Completion] | None, bool, Any]:
        produced = step(list(self.results)) if callable(step) else step
        if isinstance(produced, Completion):
            self._start_member(produced)
            return [produced], False, None
        if isinstance(produced, (list, tuple)) and all(isinstance(m, Completion) for m in produced):
            for member in produced:
                self._start_member(member)
            return list(produced), True, None
        return None, False, produced

    @staticmethod
    def _start_member(member: Completion) -> None:
        if isinstance(member, Job):
            member.start()

    async def _drain(self, first_index: int) -> None:
        in_flight: list[Completion] = []
        for step in self._steps[first_index:]:
            candidates = [step] if isinstance(step, Completion) else step
            if not isinstance(candidates, (list, tuple)):
                continue
            for member in candidates:
                if not isinstance(member, Completion):
                    continue
                if isinstance(member, Job) and not member.is_started():
                    continue
                in_flight.append(member)
        if in_flight:
            await asyncio.gather(*(member.wait() for member in in_flight))

    def _report(self, index: int, kind: ErrorKind, text: str) -> None:
        if self._abandoned:
            return
        self.failed_step = index
        LOGGER.warning("%s failed at step %d: %s %s", self.description, index, kind.value, text)
        self._fail(kind, text)
