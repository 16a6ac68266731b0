"""
tgtkeeper Ticket Lifecycle State Machine

States:
- UNINITIALIZED: nothing provisioned
- PROVISIONED: config and keytab in place, no ticket held
- ACQUIRING: initial kinit in flight
- READY: a ticket was acquired
- REFRESHING: renewal kinit in flight

Transitions happen only inside the manager's acquisition gate (or in
init(), which callers run exactly once before any refresh()).

INVARIANT: acquisition count never decreases
INVARIANT: last acquisition monotonic time never moves backwards

The wall-clock acquisition time is informational only; it may step
backwards under NTP correction.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, Optional, Tuple

import attrs
from attrs import field

from tgtkeeper.core.state_machine import (
    DEFAULT_HISTORY_LIMIT,
    StateMachineBase,
    TransitionEntry,
)


class LifecycleState(Enum):
    """Ticket lifecycle states."""

    UNINITIALIZED = auto()
    PROVISIONED = auto()
    ACQUIRING = auto()
    READY = auto()
    REFRESHING = auto()


@attrs.define(frozen=True, slots=True)
class LifecycleContext:
    """Snapshot of what the manager knows about its ticket."""

    principal: str
    realm_kdc: str = ""
    config_path: str = ""
    acquisitions: int = 0
    failures: int = 0
    last_acquired_at: Optional[datetime] = None
    last_acquired_monotonic: Optional[float] = None
    last_error: Optional[str] = None


# =============================================================================
# EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Provisioned:
    """Event: config rendered and keytab written."""

    realm_kdc: str
    config_path: str


@attrs.define(frozen=True, slots=True)
class AcquisitionStarted:
    """Event: kinit is about to be spawned."""

    reason: str = field(default="expired")


@attrs.define(frozen=True, slots=True)
class AcquisitionSucceeded:
    """Event: kinit exited with status 0."""

    acquired_at: datetime
    monotonic: float


@attrs.define(frozen=True, slots=True)
class AcquisitionFailed:
    """Event: kinit failed, timed out or could not be spawned."""

    error: str


# =============================================================================
# INVARIANTS
# =============================================================================


def acquisitions_never_decrease(old: LifecycleContext, new: LifecycleContext) -> bool:
    return new.acquisitions >= old.acquisitions


def acquisition_clock_moves_forward(old: LifecycleContext, new: LifecycleContext) -> bool:
    if old.last_acquired_monotonic is None:
        return True
    return (
        new.last_acquired_monotonic is not None
        and new.last_acquired_monotonic >= old.last_acquired_monotonic
    )


# =============================================================================
# STATE MACHINE
# =============================================================================


class LifecycleStateMachine(
    StateMachineBase[LifecycleState, Any, LifecycleContext]
):
    """
    Ticket lifecycle state machine.

    A failed renewal returns to READY with the old timestamp kept, so
    the ticket stays stale and the next refresh retries. A failed
    initial acquisition returns to PROVISIONED.
    """

    def initial_state(self) -> LifecycleState:
        return LifecycleState.UNINITIALIZED

    def transition_table(
        self,
    ) -> Dict[Tuple[LifecycleState, type], TransitionEntry]:
        return {
            (LifecycleState.UNINITIALIZED, Provisioned): (
                LifecycleState.PROVISIONED,
                self._handle_provisioned,
            ),
            # Initial acquisition (and retries after it failed)
            (LifecycleState.PROVISIONED, AcquisitionStarted): (
                LifecycleState.ACQUIRING,
                self._handle_started,
            ),
            (LifecycleState.ACQUIRING, AcquisitionSucceeded): (
                LifecycleState.READY,
                self._handle_succeeded,
            ),
            (LifecycleState.ACQUIRING, AcquisitionFailed): (
                LifecycleState.PROVISIONED,
                self._handle_failed,
            ),
            # Renewal
            (LifecycleState.READY, AcquisitionStarted): (
                LifecycleState.REFRESHING,
                self._handle_started,
            ),
            (LifecycleState.REFRESHING, AcquisitionSucceeded): (
                LifecycleState.READY,
                self._handle_succeeded,
            ),
            (LifecycleState.REFRESHING, AcquisitionFailed): (
                LifecycleState.READY,
                self._handle_failed,
            ),
        }

    @staticmethod
    def _handle_provisioned(event: Provisioned, ctx: LifecycleContext) -> LifecycleContext:
        return attrs.evolve(ctx, realm_kdc=event.realm_kdc, config_path=event.config_path)

    @staticmethod
    def _handle_started(event: AcquisitionStarted, ctx: LifecycleContext) -> LifecycleContext:
        return ctx

    @staticmethod
    def _handle_succeeded(event: AcquisitionSucceeded, ctx: LifecycleContext) -> LifecycleContext:
        return attrs.evolve(
            ctx,
            acquisitions=ctx.acquisitions + 1,
            last_acquired_at=event.acquired_at,
            last_acquired_monotonic=event.monotonic,
            last_error=None,
        )

    @staticmethod
    def _handle_failed(event: AcquisitionFailed, ctx: LifecycleContext) -> LifecycleContext:
        return attrs.evolve(ctx, failures=ctx.failures + 1, last_error=event.error)


def create_lifecycle_machine(
    principal: str,
    logger: Any = None,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> LifecycleStateMachine:
    """Create a lifecycle state machine with its invariants registered."""
    kwargs: Dict[str, Any] = {}
    if logger is not None:
        kwargs["_logger"] = logger
    machine = LifecycleStateMachine(
        _state=LifecycleState.UNINITIALIZED,
        _context=LifecycleContext(principal=principal),
        history_limit=history_limit,
        **kwargs,
    )
    machine.add_invariant("acquisitions_never_decrease", acquisitions_never_decrease)
    machine.add_invariant("acquisition_clock_moves_forward", acquisition_clock_moves_forward)
    return machine
