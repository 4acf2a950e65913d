"""
Service declarations.

A Declaration describes one service statically: its name, the names of the
services it needs, and how to acquire it once those are available.
"""

from __future__ import annotations

import inspect
from contextlib import asynccontextmanager
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, AsyncGenerator, Callable, Mapping, Optional, Sequence, Tuple

from .hooks import Hook


# Read-only name -> resource mapping handed to acquire functions and consumers
ResourceMap = Mapping[str, Any]

EMPTY_RESOURCES: ResourceMap = MappingProxyType({})


@dataclass(frozen=True)
class Declaration:
    """
    Static description of a service.

    Attributes:
        name: Unique service name
        needs: Names of the services this one depends on, in declared order
        acquire: Called with the resources it needs once they are all
            available. May return a Hook, an async context manager, an async
            generator, an awaitable, or a plain value (see as_hook).
    """

    name: str
    needs: Tuple[str, ...]
    acquire: Callable[[ResourceMap], Any]

    def __post_init__(self):
        if not isinstance(self.name, str):
            raise TypeError(f"Service name must be a string, got {type(self.name).__name__}")

        if isinstance(self.needs, str):
            raise TypeError(
                f"Service '{self.name}' needs must be a sequence of names, not a string"
            )
        needs = tuple(self.needs)
        for need in needs:
            if not isinstance(need, str):
                raise TypeError(
                    f"Service '{self.name}' needs must be names, got {type(need).__name__}"
                )
        object.__setattr__(self, "needs", needs)

        if not callable(self.acquire):
            raise TypeError(f"Service '{self.name}' acquire must be callable")


def as_hook(value: Any) -> Hook[Any]:
    """
    Coerce what an acquire function returned into a Hook.

    - Hook: used as-is
    - async generator: code before the yield acquires, code after releases
    - async context manager: entered and exited
    - awaitable: awaited, nothing to release
    - anything else: an already acquired resource, nothing to release
    """
    if isinstance(value, Hook):
        return value

    if inspect.isasyncgen(value):
        return _from_generator(value)

    if hasattr(value, "__aenter__") and hasattr(value, "__aexit__"):
        return Hook.from_context(lambda: value)

    if inspect.isawaitable(value):
        return Hook.acquire(lambda: value)

    return Hook.of(value)


def _from_generator(agen: AsyncGenerator[Any, None]) -> Hook[Any]:
    """
    Hook over a single-yield async generator.

    The code after the yield always runs on release, whether the scope exits
    normally, with an error, or through cancellation. The error is never
    thrown into the generator.
    """
    @asynccontextmanager
    async def _scope():
        try:
            value = await agen.__anext__()
        except StopAsyncIteration:
            raise RuntimeError("async generator service did not yield") from None

        try:
            yield value
        finally:
            try:
                await agen.__anext__()
            except StopAsyncIteration:
                pass
            else:
                await agen.aclose()
                raise RuntimeError("async generator service yielded more than once")

    return Hook(_scope)


def provides(
    name: Optional[str] = None,
    *,
    needs: Sequence[str] = (),
) -> Callable[[Callable[[ResourceMap], Any]], Declaration]:
    """
    Decorator turning an acquire function into a Declaration.

    Args:
        name: Service name (defaults to the function name)
        needs: Names of the services it depends on

    Example:
        @provides(needs=["config"])
        async def postgres(resources):
            conn = await connect(resources["config"]["postgres"])
            yield conn
            await conn.close()
    """
    def decorator(fn: Callable[[ResourceMap], Any]) -> Declaration:
        return Declaration(name=name or fn.__name__, needs=tuple(needs), acquire=fn)

    return decorator
