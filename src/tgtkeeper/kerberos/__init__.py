"""
tgtkeeper Kerberos Module

Components:
- lifecycle: Ticket lifecycle state machine
- manager: TGT lifecycle manager (init/refresh)
"""

from tgtkeeper.kerberos.lifecycle import (
    AcquisitionFailed,
    AcquisitionStarted,
    AcquisitionSucceeded,
    LifecycleContext,
    LifecycleState,
    LifecycleStateMachine,
    Provisioned,
    create_lifecycle_machine,
)
from tgtkeeper.kerberos.manager import KerberosManager

__all__ = [
    # State machine
    "LifecycleState",
    "LifecycleContext",
    "LifecycleStateMachine",
    "create_lifecycle_machine",
    # Events
    "Provisioned",
    "AcquisitionStarted",
    "AcquisitionSucceeded",
    "AcquisitionFailed",
    # Manager
    "KerberosManager",
]
