"""
Booture faults - Structured fault taxonomy.

Every failure raised by booture is a Fault: an exception carrying a stable
machine-readable code, a human-readable message, a domain and a severity.

Defines:
- Fault base class
- FaultDomain (explicit fault domains)
- Severity levels
- Concrete faults for graph validation, scheduling, acquisition,
  release, configuration and lifecycle
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Sequence


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines the logging level used when a fault is reported.
    """
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the stage of the bootstrap where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


# Standard Domains
FaultDomain.GRAPH = FaultDomain("graph", "Dependency graph defects")
FaultDomain.SCHEDULING = FaultDomain("scheduling", "Layer scheduling errors")
FaultDomain.ACQUISITION = FaultDomain("acquisition", "Service acquisition failures")
FaultDomain.RELEASE = FaultDomain("release", "Service release failures")
FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.LIFECYCLE = FaultDomain("lifecycle", "Lifecycle state errors")


DOMAIN_SEVERITY = {
    FaultDomain.GRAPH: Severity.FATAL,
    FaultDomain.SCHEDULING: Severity.FATAL,
    FaultDomain.ACQUISITION: Severity.ERROR,
    FaultDomain.RELEASE: Severity.ERROR,
    FaultDomain.CONFIG: Severity.FATAL,
    FaultDomain.LIFECYCLE: Severity.ERROR,
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    Attributes:
        code: Stable machine-readable identifier (e.g., "FLAWED_GRAPH")
        message: Human-readable summary
        domain: Fault domain (GRAPH, ACQUISITION, ...)
        severity: Fault severity (INFO, WARN, ERROR, FATAL)
        metadata: Additional context data

    Example:
        ```python
        raise Fault(
            code="SERVICE_DOWN",
            message="postgres refused the connection",
            domain=FaultDomain.ACQUISITION,
        )
        ```
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        # Fallback to class attributes if not provided
        self.code = code if code is not None else getattr(self, "code", None)
        self.message = message if message is not None else getattr(self, "message", None)
        self.domain = domain if domain is not None else getattr(self, "domain", None)

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)

        self.severity = severity or DOMAIN_SEVERITY.get(self.domain, Severity.ERROR)
        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging/serialization
        """
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "metadata": self.metadata,
        }


# ============================================================================
# GRAPH Faults
# ============================================================================

class GraphFault(Fault):
    """Base class for dependency graph faults."""

    def __init__(self, code: str, message: str, *, metadata: Optional[dict[str, Any]] = None):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.GRAPH,
            metadata=metadata,
        )


class FlawedGraphFault(GraphFault):
    """
    The declared dependency graph is not well-formed.

    Raised once, before any acquisition, bundling every flaw the validator
    found. Each flaw renders as one bullet of the message.
    """

    def __init__(self, flaws: Sequence[Any]):
        self.flaws = tuple(flaws)
        super().__init__(
            code="FLAWED_GRAPH",
            message="Flawed dependency graph:\n" + "\n".join(
                f"  - {flaw.render()}" for flaw in self.flaws
            ),
            metadata={"flaws": [flaw.render() for flaw in self.flaws]},
        )


# ============================================================================
# SCHEDULING Faults
# ============================================================================

class UnresolvableFault(Fault):
    """No further layer can be formed although services remain."""

    def __init__(self, pending: Sequence[str]):
        self.pending = tuple(pending)
        super().__init__(
            code="UNRESOLVABLE_SERVICES",
            message=f"Cannot bootstrap: unable to provide for: {'; '.join(self.pending)}",
            domain=FaultDomain.SCHEDULING,
            metadata={"pending": list(self.pending)},
        )


# ============================================================================
# ACQUISITION Faults
# ============================================================================

class AcquisitionFault(Fault):
    """A service failed to acquire its resource."""

    def __init__(self, service: str, cause: BaseException):
        self.service = service
        self.cause = cause
        super().__init__(
            code="ACQUISITION_FAILED",
            message=f"Failed to acquire '{service}': {cause!r}",
            domain=FaultDomain.ACQUISITION,
            metadata={"service": service, "cause": repr(cause)},
        )


class AcquisitionTimeoutFault(Fault):
    """A layer did not finish acquiring within the configured timeout."""

    def __init__(self, services: Sequence[str], timeout: float):
        self.services = tuple(services)
        self.timeout = timeout
        super().__init__(
            code="ACQUISITION_TIMEOUT",
            message=(
                f"Layer [{'; '.join(self.services)}] did not acquire "
                f"within {timeout}s"
            ),
            domain=FaultDomain.ACQUISITION,
            metadata={"services": list(self.services), "timeout": timeout},
        )


# ============================================================================
# RELEASE Faults
# ============================================================================

class ReleaseFault(Fault):
    """One or more resources failed while being released."""

    def __init__(self, errors: Sequence[BaseException]):
        self.errors = tuple(errors)
        super().__init__(
            code="RELEASE_FAILED",
            message=f"{len(self.errors)} release(s) failed: " + "; ".join(
                repr(error) for error in self.errors
            ),
            domain=FaultDomain.RELEASE,
            metadata={"errors": [repr(error) for error in self.errors]},
        )


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigInvalidFault(Fault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            domain=FaultDomain.CONFIG,
            metadata={"key": key, "reason": reason},
        )


# ============================================================================
# LIFECYCLE Faults
# ============================================================================

class LifecycleFault(Fault):
    """Lifecycle operation attempted from the wrong phase."""

    def __init__(self, operation: str, phase: str):
        super().__init__(
            code="LIFECYCLE_INVALID_PHASE",
            message=f"Cannot {operation} from phase {phase}",
            domain=FaultDomain.LIFECYCLE,
            metadata={"operation": operation, "phase": phase},
        )
