"""Invocation adapter: turn an operation plus arguments into a zero-arg thunk.

The engine only ever calls `await thunk()`. Invocation bridges the
common shapes of caller operations:
    - async def functions (awaited directly)
    - sync callables returning an awaitable (awaited)
    - plain sync callables (called inline, or offloaded to a worker
      thread with to_thread=True)

Example:
    >>> thunk = bind(fetch_json, "https://example.com", timeout=5)
    >>> data = await thunk()
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeAlias, TypeVar

T = TypeVar("T")

AsyncThunk: TypeAlias = Callable[[], Awaitable[T]]


@dataclass(frozen=True, slots=True)
class Invocation(Generic[T]):
    """Operation bound to its arguments. Each call starts a fresh attempt.

    Attributes:
        fn: Operation to invoke
        args: Positional arguments for every attempt
        kwargs: Keyword arguments for every attempt
        to_thread: Run sync operations in a worker thread
    """

    fn: Callable[..., Awaitable[T] | T]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    to_thread: bool = False

    @property
    def name(self) -> str:
        target = self.fn.func if isinstance(self.fn, functools.partial) else self.fn
        return getattr(target, "__qualname__", None) or type(target).__name__

    async def __call__(self) -> T:
        if self.to_thread and not _is_async_callable(self.fn):
            result = await asyncio.to_thread(self.fn, *self.args, **self.kwargs)
        else:
            result = self.fn(*self.args, **self.kwargs)
        if inspect.isawaitable(result):
            return await result
        return result  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"Invocation({self.name}, args={len(self.args)}, kwargs={sorted(self.kwargs)})"


def _is_async_callable(fn: object) -> bool:
    while isinstance(fn, functools.partial):
        fn = fn.func
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None))


def bind(
    fn: Callable[..., Awaitable[T] | T],
    *args: Any,
    to_thread: bool = False,
    **kwargs: Any,
) -> Invocation[T]:
    """Bind operation and arguments into a zero-argument async thunk.

    Args:
        fn: Async or sync operation
        *args: Positional arguments passed on every attempt
        to_thread: Offload sync operations to a worker thread
        **kwargs: Keyword arguments passed on every attempt

    Raises:
        TypeError: If fn is not callable
    """
    if not callable(fn):
        raise TypeError(f"Operation must be callable, got {type(fn).__name__}")
    if isinstance(fn, Invocation) and not args and not kwargs:
        return fn
    return Invocation(fn, args, dict(kwargs), to_thread)
