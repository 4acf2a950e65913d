"""
Testing utilities for booture.

ResourceProbe builds declarations whose acquisitions and releases are
recorded, so tests can assert ordering, concurrency and exactly-once
disposal without real resources.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
import asyncio

from .declarations import Declaration, ResourceMap
from .hooks import Hook


class ProbeError(Exception):
    """Failure injected by a ResourceProbe."""


class ResourceProbe:
    """
    Records what happens to the services it declares.

    Example:
        probe = ResourceProbe()
        services = bootstrap([probe.declare("db"), probe.declare("app", ["db"])])
        await services.run(lambda resources: None)
        assert probe.events == [
            ("acquire", "db"), ("acquire", "app"),
            ("release", "app"), ("release", "db"),
        ]
    """

    def __init__(self):
        self.events: List[Tuple[str, str]] = []
        self.seen: Dict[str, ResourceMap] = {}
        self.in_flight = 0
        self.peak_in_flight = 0

    def declare(
        self,
        name: str,
        needs: Sequence[str] = (),
        *,
        value: Any = None,
        delay: float = 0,
        fail_acquire: bool = False,
        fail_release: bool = False,
    ) -> Declaration:
        """
        Declare a recorded service.

        Args:
            name: Service name
            needs: Service needs
            value: Resource value (defaults to the name)
            delay: Seconds the acquisition takes
            fail_acquire: Raise ProbeError after the delay instead of acquiring
            fail_release: Raise ProbeError when released (after recording it)
        """
        resource = name if value is None else value

        async def acquisition():
            self.events.append(("start", name))
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                if delay:
                    await asyncio.sleep(delay)
                if fail_acquire:
                    raise ProbeError(f"{name} failed to acquire")
            except asyncio.CancelledError:
                self.events.append(("cancel", name))
                raise
            finally:
                self.in_flight -= 1
            self.events.append(("acquire", name))
            return resource

        def release(_resource):
            self.events.append(("release", name))
            if fail_release:
                raise ProbeError(f"{name} failed to release")

        def acquire(resources: ResourceMap) -> Hook[Any]:
            self.seen[name] = resources
            return Hook.hook(acquisition, release)

        return Declaration(name=name, needs=tuple(needs), acquire=acquire)

    def names(self, kind: str) -> List[str]:
        """Names of every event of the given kind, in order."""
        return [name for event, name in self.events if event == kind]

    @property
    def acquired(self) -> List[str]:
        return self.names("acquire")

    @property
    def released(self) -> List[str]:
        return self.names("release")

    def index(self, kind: str, name: str) -> Optional[int]:
        """Position of an event in the log, or None."""
        try:
            return self.events.index((kind, name))
        except ValueError:
            return None

    def reset(self) -> None:
        """Reset tracking."""
        self.events.clear()
        self.seen.clear()
        self.in_flight = 0
        self.peak_in_flight = 0
