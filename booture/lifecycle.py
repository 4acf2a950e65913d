"""
Lifecycle Manager - Runs a bootstrap as a tracked application lifecycle.

Wraps the hook returned by bootstrap() with lifecycle phases, event
emission and logging, so an application can start its services, run, and
stop them with a single async context manager.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional
from dataclasses import dataclass
from enum import Enum
import logging

from .config import DEFAULT_CONFIG, BootConfig
from .declarations import Declaration, ResourceMap
from .faults import LifecycleFault
from .hooks import resolve
from .scheduler import bootstrap


logger = logging.getLogger("booture.lifecycle")


class BootPhase(Enum):
    """Lifecycle phases."""
    INIT = "init"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class BootEvent:
    """Event emitted during lifecycle transitions."""
    phase: BootPhase
    message: Optional[str] = None
    error: Optional[BaseException] = None


class BootManager:
    """
    Starts and stops a set of services.

    The graph is validated when the manager is created, so a flawed graph
    fails before anything is started.

    Usage:
        async with BootManager(declarations) as resources:
            await resources["app"].serve()
        # Every service released, last layer first
    """

    def __init__(
        self,
        declarations: Iterable[Declaration],
        config: Optional[BootConfig] = None,
    ):
        """
        Initialize manager.

        Args:
            declarations: Service declarations
            config: Optional BootConfig

        Raises:
            FlawedGraphFault: If the graph is not well-formed
        """
        self.declarations: List[Declaration] = list(declarations)
        self.config = config or DEFAULT_CONFIG
        self.hook = bootstrap(self.declarations, config=self.config)
        self.phase = BootPhase.INIT
        self.event_handlers: List[Callable[[BootEvent], None]] = []
        self.logger = logger
        self._scope: Any = None

    def on_event(self, handler: Callable[[BootEvent], None]) -> "BootManager":
        """
        Register event handler.

        Args:
            handler: Callable that receives BootEvent
        """
        self.event_handlers.append(handler)
        return self

    def _emit_event(self, event: BootEvent):
        """Emit lifecycle event to all handlers."""
        for handler in self.event_handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Event handler error: {e}")

    def _transition(self, phase: BootPhase, message: Optional[str] = None, error: Optional[BaseException] = None):
        self.phase = phase
        self._emit_event(BootEvent(phase, message=message, error=error))

    async def __aenter__(self) -> ResourceMap:
        """Acquire every service."""
        if self.phase != BootPhase.INIT:
            raise LifecycleFault("start", self.phase.value)

        self._transition(BootPhase.STARTING)
        self.logger.info(f"Starting {len(self.declarations)} services...")

        scope = self.hook.open()
        try:
            resources = await scope.__aenter__()
        except BaseException as e:
            self._transition(BootPhase.ERROR, message="Startup failed", error=e)
            self.logger.error(f"❌ Startup failed: {e}")
            raise

        self._scope = scope
        self._transition(BootPhase.READY)
        self.logger.info(f"✅ All services started ({len(resources)} services)")
        return resources

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release every service."""
        if self._scope is None:
            return False

        scope, self._scope = self._scope, None
        self._transition(BootPhase.STOPPING)
        self.logger.info("Stopping services...")

        try:
            await scope.__aexit__(exc_type, exc_val, exc_tb)
        except BaseException as e:
            self._transition(BootPhase.ERROR, message="Shutdown failed", error=e)
            self.logger.error(f"❌ Shutdown failed: {e}")
            raise

        self._transition(BootPhase.STOPPED)
        self.logger.info("✅ All services stopped")
        return False  # Don't suppress exceptions

    async def run(self, consumer: Callable[[ResourceMap], Any]) -> Any:
        """
        Start services, hand them to consumer, stop them.

        Args:
            consumer: Sync or async callable receiving the ResourceMap

        Returns:
            Whatever consumer returned
        """
        async with self as resources:
            return await resolve(consumer(resources))

    def get_status(self) -> Dict[str, Any]:
        """
        Get current lifecycle status.

        Returns:
            Status dict with phase and declared services
        """
        return {
            "phase": self.phase.value,
            "services": [d.name for d in self.declarations],
            "total_services": len(self.declarations),
        }
