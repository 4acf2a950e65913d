"""
Layered scheduler - acquires services at optimal parallelism.

Scheduling repeatedly takes every remaining declaration whose needs are
already acquired (a layer), acquires that layer concurrently, and nests the
rest of the schedule inside the layer's scope. Because layers nest, leaving
the final scope releases the last layer first and the first layer last,
so nothing is released while a service that needs it is still alive.
"""

import asyncio
import logging
from functools import partial
from types import MappingProxyType
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, BootConfig
from .declarations import EMPTY_RESOURCES, Declaration, ResourceMap, as_hook
from .faults import AcquisitionFault, AcquisitionTimeoutFault, UnresolvableFault
from .graph import partition
from .hooks import Hook
from .validator import check


logger = logging.getLogger("booture.scheduler")


def _visible(resources: ResourceMap, needs: Sequence[str], strict: bool) -> ResourceMap:
    """The part of resources an acquire function gets to see."""
    if not strict:
        return resources
    return MappingProxyType({need: resources[need] for need in needs})


def _merge(resources: ResourceMap, pairs: List[Tuple[str, Any]]) -> ResourceMap:
    merged = dict(resources)
    merged.update(pairs)
    return MappingProxyType(merged)


def _provide(
    declaration: Declaration,
    resources: ResourceMap,
    config: BootConfig,
) -> Hook[Tuple[str, Any]]:
    """Hook acquiring one service, tagged with its name."""
    name = declaration.name
    try:
        hook = as_hook(declaration.acquire(
            _visible(resources, declaration.needs, config.strict_visibility)
        ))
    except Exception as exc:
        hook = Hook.fail(exc)

    return hook.translate_errors(partial(AcquisitionFault, name)).map(
        lambda value: (name, value)
    )


def _call_layer(
    layer: List[Declaration],
    resources: ResourceMap,
    config: BootConfig,
    index: int,
) -> Hook[ResourceMap]:
    """Hook acquiring a whole layer concurrently and extending resources."""
    names = [d.name for d in layer]
    timeout = config.acquire_timeout

    logger.info(f"  ↳ Layer {index}: acquiring {', '.join(names)}")

    joined = Hook.join(
        [_provide(declaration, resources, config) for declaration in layer],
        timeout=timeout,
    )

    if timeout is not None:
        def _on_timeout(exc: Exception) -> BaseException:
            if isinstance(exc, asyncio.TimeoutError):
                return AcquisitionTimeoutFault(names, timeout)
            return exc

        joined = joined.translate_errors(_on_timeout)

    def _extend(pairs: List[Tuple[str, Any]]) -> ResourceMap:
        logger.debug(f"     ✓ Layer {index} acquired ({len(pairs)} services)")
        return _merge(resources, pairs)

    return joined.map(_extend)


def _complete(
    remaining: List[Declaration],
    hook_resources: Hook[ResourceMap],
    config: BootConfig,
    index: int,
) -> Hook[ResourceMap]:
    if not remaining:
        return hook_resources

    def _next_layer(resources: ResourceMap) -> Hook[ResourceMap]:
        ready, pending = partition(remaining, resources)
        if not ready:
            return Hook.fail(UnresolvableFault([d.name for d in pending]))
        return _complete(pending, _call_layer(ready, resources, config, index), config, index + 1)

    return hook_resources.nest(_next_layer)


def schedule(
    declarations: Iterable[Declaration],
    *,
    config: Optional[BootConfig] = None,
) -> Hook[ResourceMap]:
    """
    Compose the layered acquisition of already validated declarations.

    Entering the returned hook fails with UnresolvableFault if at some point
    no remaining service has all of its needs acquired.

    Args:
        declarations: Validated declarations
        config: Optional BootConfig (timeouts, visibility)

    Returns:
        Hook whose value is the complete ResourceMap
    """
    return _complete(
        list(declarations),
        Hook.of(EMPTY_RESOURCES),
        config or DEFAULT_CONFIG,
        1,
    )


def bootstrap(
    declarations: Iterable[Declaration],
    *,
    config: Optional[BootConfig] = None,
) -> Hook[ResourceMap]:
    """
    Validate declarations and compose their acquisition and release.

    Nothing is acquired until the returned hook is opened. Every resource
    acquired is released exactly once when the scope exits, last layer first.

    Args:
        declarations: Service declarations
        config: Optional BootConfig

    Returns:
        Hook whose value is the ResourceMap of every service

    Raises:
        FlawedGraphFault: Immediately, if the graph is not well-formed

    Example:
        services = bootstrap([config_service, postgres_service, app_service])
        await services.run(lambda resources: resources["app"].serve())
    """
    declarations = list(declarations)
    check(declarations)
    return schedule(declarations, config=config)
