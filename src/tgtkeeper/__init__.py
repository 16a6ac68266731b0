"""
tgtkeeper - Kerberos TGT lifecycle for short-lived compute

Keeps a Kerberos ticket-granting ticket alive inside an AWS Lambda
function, where no host-level Kerberos daemon is available.

Responsibilities:
- KDC discovery (static option or DNS SRV)
- krb5.conf rendering from a shipped template
- Keytab provisioning and initial kinit
- Concurrency-safe, age-gated TGT renewal

Example Usage:
    from datetime import timedelta
    from tgtkeeper import KerberosManager, ManagerOptions

    manager = KerberosManager(
        options=ManagerOptions(
            principal="svc@EXAMPLE.COM",
            realm_kdc_srv_name="_kerberos._udp.example.com",
            ticket_lifetime=timedelta(hours=8),
        ),
    )
    with open("/var/task/etc/svc.keytab", "rb") as keytab:
        manager.init(keytab)

    def handler(event, context):
        manager.refresh()
        ...
"""

from tgtkeeper.core.types import KerberosPaths, ManagerOptions
from tgtkeeper.core.exceptions import (
    AcquisitionError,
    ConfigurationError,
    MaterializationError,
    TgtKeeperError,
)
from tgtkeeper.kerberos.lifecycle import LifecycleState
from tgtkeeper.kerberos.manager import KerberosManager

__version__ = "0.1.0"

__all__ = [
    # Main API
    "KerberosManager",
    "ManagerOptions",
    "KerberosPaths",
    "LifecycleState",
    # Errors
    "TgtKeeperError",
    "ConfigurationError",
    "MaterializationError",
    "AcquisitionError",
    # Metadata
    "__version__",
]
