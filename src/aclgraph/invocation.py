"""Single asynchronous result type for engine operations.

Every public engine operation returns an ``Invocation``. It can be awaited,
observed through a node-style callback, or run synchronously. Whatever the
mix, the underlying operation runs at most once per invocation: later
requests get the same outcome (value or exception).
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import threading
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")

Callback = Callable[[Optional[BaseException], Optional[T]], None]


class Invocation(Generic[T]):
    """One call of an engine operation.

    Attributes:
        name: Operation name (e.g. ``"grant"``).
        parameters: Arguments the operation was called with.
    """

    def __init__(
        self,
        name: str,
        factory: Callable[[], Awaitable[T]],
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.parameters = dict(parameters or {})
        self._factory = factory
        self._future: Optional[asyncio.Future[T]] = None
        self._outcome: Optional[tuple[Optional[BaseException], Optional[T]]] = None
        self._lock = threading.Lock()

    @property
    def fired(self) -> bool:
        """Whether the operation has been started."""
        return self._future is not None or self._outcome is not None

    def execute(self) -> asyncio.Future[T]:
        """Start the operation on the running loop (once) and return its future."""
        with self._lock:
            if self._future is None:
                if self._outcome is not None:
                    self._future = self._completed_future()
                else:
                    self._future = asyncio.ensure_future(self._factory())
            return self._future

    def _completed_future(self) -> asyncio.Future[T]:
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        error, value = self._outcome  # type: ignore[misc]
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)  # type: ignore[arg-type]
        return future

    def __await__(self):
        return self.execute().__await__()

    def add_callback(self, callback: Callback[T]) -> Invocation[T]:
        """Call ``callback(error, result)`` once the outcome is known.

        Starts the operation if it has not been started yet.
        """
        future = self.execute()

        def _done(done: asyncio.Future[T]) -> None:
            if done.cancelled():
                callback(asyncio.CancelledError(), None)
                return
            error = done.exception()
            callback(error, None if error is not None else done.result())

        future.add_done_callback(_done)
        return self

    def run_sync(self) -> T:
        """Run the operation to completion without an event loop.

        Raises:
            RuntimeError: if called from a running event loop, or while the
                operation is still pending on another loop.
        """
        with self._lock:
            if self._outcome is None:
                if self._future is not None:
                    if not self._future.done():
                        raise RuntimeError(f"{self.name} is still running on another event loop")
                    error = self._future.exception()
                    self._outcome = (error, None if error is not None else self._future.result())
                else:
                    self._outcome = asyncio.run(self._capture())

        error, value = self._outcome
        if error is not None:
            raise error
        return value  # type: ignore[return-value]

    async def _capture(self) -> tuple[Optional[BaseException], Optional[T]]:
        try:
            return None, await self._factory()
        except Exception as e:
            return e, None

    def __repr__(self) -> str:
        return f"Invocation(name={self.name!r}, fired={self.fired})"


def operation(method: Callable[..., Awaitable[T]]) -> Callable[..., Invocation[T]]:
    """Turn an async engine method into one returning an ``Invocation``.

    Usage:
        @operation
        async def grant(self, groups, resources, permissions):
            ...

        await engine.grant("staff", "doc1", "read")
        engine.grant("staff", "doc1", "read").add_callback(on_done)
    """

    signature = inspect.signature(method)

    @functools.wraps(method)
    def wrapper(self, *args: Any, **kwargs: Any) -> Invocation[T]:
        bound = signature.bind(self, *args, **kwargs)
        parameters = {key: value for key, value in bound.arguments.items() if key != "self"}
        return Invocation(
            method.__name__,
            lambda: method(self, *args, **kwargs),
            parameters,
        )

    return wrapper


__all__ = ["Callback", "Invocation", "operation"]
