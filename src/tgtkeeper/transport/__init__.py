"""
tgtkeeper Transport Layer

Everything that leaves the process:
- kdc_resolver: DNS SRV discovery of the realm KDC
- kinit: Blocking runner for kinit/klist
"""

from tgtkeeper.transport.kdc_resolver import (
    KdcResolver,
    query_srv_records,
    srv_target_host,
)
from tgtkeeper.transport.kinit import CommandRunner

__all__ = [
    "KdcResolver",
    "query_srv_records",
    "srv_target_host",
    "CommandRunner",
]
