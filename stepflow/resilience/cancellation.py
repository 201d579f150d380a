"""
Cooperative cancellation tokens
"""

import asyncio
import weakref
from typing import Any, Awaitable, Optional

from ..errors import OperationCancelledError


class CancellationToken:
    """
    Cancellation signal shared by every layer of one operation.

    Linked tokens are cancelled together with their parent but can also
    be cancelled on their own, which is how a timeout stops its
    operation without cancelling the caller.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._cancelled = False
        self._reason: Optional[str] = None
        self._event: Optional[asyncio.Event] = None
        self._children: "weakref.WeakSet[CancellationToken]" = weakref.WeakSet()
        if parent is not None:
            parent._children.add(self)
            if parent.is_cancelled:
                self.cancel(parent.reason)

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(self._reason)

    def create_linked(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def wait(self) -> None:
        """Block until cancelled"""
        await self._get_event().wait()

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable``; raise OperationCancelledError if the token fires first"""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._get_event().wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelledError(self._reason)

    async def sleep(self, delay: float) -> None:
        """Sleep that ends early with OperationCancelledError on cancellation"""
        if delay <= 0:
            self.raise_if_cancelled()
            return
        await self.guard(asyncio.sleep(delay))

