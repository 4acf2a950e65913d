"""
Scoped resources - acquire/release pairs that compose.

A Hook is a lazy, reusable description of a resource: opening it acquires
the resource, leaving the scope releases it, whether the scope exits
normally, with an error, or through cancellation.

Hooks compose in two ways:
- nest(): sequential. The inner hook is acquired after the outer one and
  released before it.
- join(): parallel. All hooks are acquired concurrently and the joined
  scope is entered only when every one succeeded. On failure, members that
  did acquire are released before the error propagates.

Usage:
    pool = Hook.hook(create_pool, lambda pool: pool.close())
    async with pool.open() as p:
        ...

    await pool.run(lambda p: serve(p))
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager
from typing import (
    Any,
    AsyncContextManager,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from .faults import ReleaseFault


logger = logging.getLogger("booture.hooks")

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


async def resolve(value: Any) -> Any:
    """Await value if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


class Hook(Generic[T]):
    """
    Scoped resource.

    Wraps a zero-argument factory returning an async context manager. Each
    call to open() produces a fresh scope, so the same hook can be run any
    number of times.
    """

    __slots__ = ("_factory",)

    def __init__(self, factory: Callable[[], AsyncContextManager[T]]):
        self._factory = factory

    def open(self) -> AsyncContextManager[T]:
        """Open a new scope for this resource."""
        return self._factory()

    async def run(self, consumer: Callable[[T], Any]) -> Any:
        """
        Acquire the resource, hand it to consumer, then release it.

        Args:
            consumer: Sync or async callable receiving the resource

        Returns:
            Whatever consumer returned
        """
        async with self.open() as value:
            return await resolve(consumer(value))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def of(cls, value: T) -> "Hook[T]":
        """Hook holding an already available value. Nothing to release."""
        @asynccontextmanager
        async def _pure():
            yield value

        return cls(_pure)

    @classmethod
    def acquire(cls, acquisition: Callable[[], Awaitable[T] | T]) -> "Hook[T]":
        """Hook whose resource is acquired by acquisition and never released."""
        @asynccontextmanager
        async def _acquired():
            yield await resolve(acquisition())

        return cls(_acquired)

    @classmethod
    def hook(
        cls,
        acquisition: Callable[[], Awaitable[T] | T],
        release: Callable[[T], Awaitable[None] | None],
    ) -> "Hook[T]":
        """
        Pair an acquisition with its release.

        Args:
            acquisition: Sync or async zero-argument callable producing the resource
            release: Sync or async callable disposing of the resource

        Example:
            Hook.hook(lambda: asyncpg.connect(url), lambda conn: conn.close())
        """
        @asynccontextmanager
        async def _hooked():
            resource = await resolve(acquisition())
            try:
                yield resource
            finally:
                await resolve(release(resource))

        return cls(_hooked)

    @classmethod
    def from_context(cls, factory: Callable[[], AsyncContextManager[T]]) -> "Hook[T]":
        """Hook backed by an async context manager factory."""
        return cls(factory)

    @classmethod
    def fail(cls, error: BaseException) -> "Hook[Any]":
        """Hook whose acquisition always raises error."""
        @asynccontextmanager
        async def _failed():
            raise error
            yield  # pragma: no cover

        return cls(_failed)

    # ------------------------------------------------------------------
    # Combinators
    # ------------------------------------------------------------------

    def map(self, fn: Callable[[T], U]) -> "Hook[U]":
        """Transform the acquired value. The resource is still released if fn raises."""
        @asynccontextmanager
        async def _mapped():
            async with self.open() as value:
                yield fn(value)

        return Hook(_mapped)

    def nest(self, fn: Callable[[T], "Hook[U]"]) -> "Hook[U]":
        """
        Sequential composition.

        fn receives this hook's value and returns the inner hook. The inner
        resource is acquired after this one and released before it.
        """
        @asynccontextmanager
        async def _nested():
            async with self.open() as value:
                async with fn(value).open() as inner:
                    yield inner

        return Hook(_nested)

    def translate_errors(self, translate: Callable[[Exception], BaseException]) -> "Hook[T]":
        """
        Map exceptions raised while acquiring.

        Errors raised by the consumer or during release pass through untouched.
        Cancellation is never translated.
        """
        @asynccontextmanager
        async def _translated():
            async with AsyncExitStack() as stack:
                try:
                    value = await stack.enter_async_context(self.open())
                except Exception as exc:
                    translated = translate(exc)
                    if translated is exc:
                        raise
                    raise translated from exc
                yield value

        return Hook(_translated)

    @staticmethod
    def join(hooks: Sequence["Hook[Any]"], *, timeout: Optional[float] = None) -> "Hook[List[Any]]":
        """
        Parallel composition.

        Acquires every hook concurrently. The joined scope yields the list of
        values in input order and is entered only once all acquisitions
        succeeded. On exit all members are released concurrently.

        If any acquisition fails, is cancelled, or the timeout expires, the
        remaining in-flight acquisitions are cancelled and every member that
        did acquire is released before the error is re-raised.

        Args:
            hooks: Hooks to acquire together
            timeout: Optional limit in seconds for acquiring all members

        Raises:
            asyncio.TimeoutError: If timeout expires before all members acquired
            ReleaseFault: If the scope exits normally but a release failed
        """
        hooks = list(hooks)

        @asynccontextmanager
        async def _joined():
            managers = [hook.open() for hook in hooks]
            tasks = [asyncio.ensure_future(manager.__aenter__()) for manager in managers]

            try:
                gathered = asyncio.gather(*tasks)
                if timeout is None:
                    values = await gathered
                else:
                    values = await asyncio.wait_for(gathered, timeout)
            except BaseException:
                exc_info = sys.exc_info()
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                entered = [
                    manager
                    for manager, task in zip(managers, tasks)
                    if not task.cancelled() and task.exception() is None
                ]
                await _release_all(entered, exc_info)
                raise

            try:
                yield list(values)
            except BaseException:
                await _release_all(managers, sys.exc_info())
                raise

            await _release_all(managers, (None, None, None))

        return Hook(_joined)


async def _release_all(managers: Sequence[AsyncContextManager[Any]], exc_info: tuple) -> None:
    """
    Release every entered manager concurrently.

    When unwinding an error, release failures are logged and the original
    error keeps propagating. On a clean exit they raise ReleaseFault once
    every release has run.
    """
    if not managers:
        return

    primary = exc_info[1]
    results = await asyncio.gather(
        *(manager.__aexit__(*exc_info) for manager in managers),
        return_exceptions=True,
    )
    errors = [
        result for result in results
        if isinstance(result, BaseException) and result is not primary
    ]
    if not errors:
        return

    if primary is not None:
        for error in errors:
            logger.error(f"Release failed while unwinding {primary!r}: {error!r}")
        return

    raise ReleaseFault(errors)
