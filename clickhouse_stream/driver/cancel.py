import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional

from clickhouse_stream.driver.exceptions import QueryCancelledError


class CancellationToken:
    """
    Cooperative cancellation handle shared by the caller and a single request.  Cancelling the token aborts the
    request the next time it waits on the network, including reads from a returned result stream.  The server may
    continue executing the query; use KILL QUERY with the query id to stop it there.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason or 'The request was cancelled'

    def cancel(self, reason: Optional[str] = None):
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], Any]):
        """Run callback when the token is cancelled, immediately if it already is"""
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], Any]):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def raise_if_cancelled(self):
        if self.cancelled:
            raise QueryCancelledError(self.reason)

    async def wait(self):
        await self._event.wait()


async def cancellable(awaitable: Awaitable, token: Optional[CancellationToken]):
    """
    Await awaitable, failing with QueryCancelledError as soon as token is cancelled
    :param awaitable: Network operation to run
    :param token: Optional cancellation token, without one the awaitable is simply awaited
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise QueryCancelledError(token.reason)
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait((task, waiter), return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise
    if task.done():
        waiter.cancel()
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise QueryCancelledError(token.reason)
