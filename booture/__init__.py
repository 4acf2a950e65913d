"""
Booture - Application bootstrapping with guaranteed disposal.

Declare services with their dependencies; booture validates the graph,
acquires services layer by layer at maximal parallelism, and releases every
acquired resource exactly once, last layer first, however the run ends.

    from booture import Declaration, Hook, bootstrap

    services = bootstrap([
        Declaration("config", (), lambda _: load_config()),
        Declaration("db", ("config",), lambda r: Hook.hook(
            lambda: connect(r["config"]), lambda conn: conn.close(),
        )),
    ])
    await services.run(lambda resources: serve(resources["db"]))
"""

__version__ = "1.0.0"

from .hooks import Hook
from .declarations import Declaration, ResourceMap, as_hook, provides
from .validator import (
    CircularDependency,
    DuplicateProvider,
    MissingProvider,
    check,
    find_flaws,
)
from .scheduler import bootstrap, schedule
from .graph import ServiceGraph, partition, plan_layers
from .config import BootConfig, ConfigLoader
from .lifecycle import BootEvent, BootManager, BootPhase
from .faults import (
    Fault,
    FaultDomain,
    Severity,
    FlawedGraphFault,
    UnresolvableFault,
    AcquisitionFault,
    AcquisitionTimeoutFault,
    ReleaseFault,
    ConfigInvalidFault,
    LifecycleFault,
)

__all__ = [
    # Core
    "bootstrap",
    "schedule",
    "Hook",
    "Declaration",
    "ResourceMap",
    "as_hook",
    "provides",

    # Validation
    "check",
    "find_flaws",
    "DuplicateProvider",
    "MissingProvider",
    "CircularDependency",

    # Inspection
    "ServiceGraph",
    "partition",
    "plan_layers",

    # Config & lifecycle
    "BootConfig",
    "ConfigLoader",
    "BootManager",
    "BootPhase",
    "BootEvent",

    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "FlawedGraphFault",
    "UnresolvableFault",
    "AcquisitionFault",
    "AcquisitionTimeoutFault",
    "ReleaseFault",
    "ConfigInvalidFault",
    "LifecycleFault",
]
