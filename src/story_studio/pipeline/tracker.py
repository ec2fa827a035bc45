"""Per-item generation tracker: N independent remote calls with isolated retry."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

import structlog

from story_studio.models.project import Failed, Pending, Success

logger = structlog.get_logger()

T = TypeVar("T")

CANCELLED_MESSAGE = "Cancelled"


class ItemTracker(Generic[T]):
    """Run one remote call per scene index and keep a result slot for each.

    A failing call is recorded as ``Failed`` at its own index and never
    affects its siblings. Nothing here raises for a per-item failure; the
    caller decides whether to offer a retry.

    Args:
        label: Name used in log events ("audio", "images", "video").
        worker: Coroutine function producing a URL for one input.
        timeout: Deadline in seconds applied to every call (``None`` = no limit).
    """

    def __init__(
        self,
        label: str,
        worker: Callable[[T], Awaitable[str]],
        timeout: float | None = None,
    ):
        self.label = label
        self._worker = worker
        self._timeout = timeout
        self._inputs: list[T] = []
        self._slots: list[Any] = []
        self._inflight: dict[int, asyncio.Future] = {}
        self._cancelled: set[int] = set()

    @property
    def slots(self) -> list[Any]:
        return list(self._slots)

    def load(self, inputs: Sequence[T], slots: Sequence[Any] | None = None) -> None:
        """Resynchronise inputs and existing results (e.g. after an edit or a history load)."""
        self._inputs = list(inputs)
        if slots is None or len(slots) != len(self._inputs):
            self._slots = [Pending() for _ in self._inputs]
        else:
            self._slots = list(slots)

    def in_flight(self, index: int) -> bool:
        task = self._inflight.get(index)
        return task is not None and not task.done()

    def any_in_flight(self) -> bool:
        return any(not task.done() for task in self._inflight.values())

    async def _attempt(self, index: int) -> Any:
        call: Awaitable[str] = self._worker(self._inputs[index])
        if self._timeout is not None:
            call = asyncio.wait_for(call, timeout=self._timeout)
        task = asyncio.ensure_future(call)
        self._inflight[index] = task

        try:
            value = await task
        except asyncio.CancelledError:
            if index not in self._cancelled:
                raise
            result: Any = Failed(message=CANCELLED_MESSAGE)
        except asyncio.TimeoutError:
            if self._timeout is None:
                result = Failed(message="Timed out")
            else:
                result = Failed(message=f"Timed out after {self._timeout:g}s")
        except Exception as exc:
            logger.warning(
                "tracker.item_failed", label=self.label, index=index, error=str(exc)
            )
            result = Failed(message=str(exc) or exc.__class__.__name__)
        else:
            if value:
                result = Success(value=value)
            else:
                result = Failed(message=f"No {self.label} URL returned.")
        finally:
            owned = self._inflight.get(index) is task
            if owned:
                del self._inflight[index]
                self._cancelled.discard(index)

        # A newer attempt owns the slot, or a reload shrank the list.
        if owned and index < len(self._slots):
            self._slots[index] = result
        return result

    async def generate_all(self, inputs: Sequence[T]) -> list[Any]:
        """Issue every call concurrently and replace all slots with the outcome."""
        self.load(inputs)
        logger.info("tracker.generate_all.start", label=self.label, count=len(self._inputs))
        await asyncio.gather(*(self._attempt(i) for i in range(len(self._inputs))))
        failed = sum(1 for slot in self._slots if isinstance(slot, Failed))
        logger.info("tracker.generate_all.done", label=self.label, failed=failed)
        return self.slots

    async def retry_one(self, index: int, *, force: bool = False) -> Any:
        """Re-issue the call for *index* only.

        A slot that already holds a success is left alone unless *force* is set.
        """
        if not 0 <= index < len(self._inputs):
            raise IndexError(f"{self.label} index {index} out of range")
        if isinstance(self._slots[index], Success) and not force:
            return self._slots[index]
        logger.info("tracker.retry_one", label=self.label, index=index, force=force)
        return await self._attempt(index)

    async def retry_all_sequentially(self) -> list[Any]:
        """Walk indices in order, awaiting each call before starting the next.

        Slots that already hold a success are skipped.
        """
        for index in range(len(self._inputs)):
            if isinstance(self._slots[index], Success):
                continue
            await self._attempt(index)
        return self.slots

    def cancel(self, index: int) -> bool:
        """Cancel the in-flight call for *index*; its slot becomes ``Failed``."""
        task = self._inflight.get(index)
        if task is None or task.done():
            return False
        self._cancelled.add(index)
        task.cancel()
        logger.info("tracker.cancelled", label=self.label, index=index)
        return True
