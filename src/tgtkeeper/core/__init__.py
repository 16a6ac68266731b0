"""
tgtkeeper Core Module

Provides foundational types and abstractions used across the package.

Components:
- types: Options, paths, resolved KDC and acquisition command
- clock: Lock-guarded acquisition timestamp
- state_machine: Base state machine with invariant checking
- exceptions: Custom exception types
"""

from tgtkeeper.core.types import (
    AcquisitionCommand,
    KdcSource,
    KerberosPaths,
    ManagerOptions,
    ResolvedKdc,
)
from tgtkeeper.core.clock import AtomicTimestamp
from tgtkeeper.core.state_machine import StateMachineBase, Transition
from tgtkeeper.core.exceptions import (
    AcquisitionError,
    AcquisitionTimeout,
    ConfigurationError,
    InvariantViolation,
    MaterializationError,
    ResolutionError,
    StateError,
    TgtKeeperError,
)

__all__ = [
    # Types
    "AcquisitionCommand",
    "KdcSource",
    "KerberosPaths",
    "ManagerOptions",
    "ResolvedKdc",
    "AtomicTimestamp",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "TgtKeeperError",
    "ConfigurationError",
    "ResolutionError",
    "MaterializationError",
    "AcquisitionError",
    "AcquisitionTimeout",
    "StateError",
    "InvariantViolation",
]
