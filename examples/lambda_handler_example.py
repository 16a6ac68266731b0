#!/usr/bin/env python3
"""
Lambda Handler Kerberos Example

Demonstrates how a Lambda function keeps a TGT alive with
KerberosManager.

Features:
1. Manager construction and enablement detection
2. One-time init (KDC, krb5.conf, keytab, kinit)
3. Per-request refresh with age gating
4. Forced renewal and status reporting

The demo runs anywhere: it relocates the Lambda paths into a temporary
directory, forces enablement and replaces kinit with a simulated run.
"""

import subprocess
import tempfile
import time
from datetime import timedelta
from pathlib import Path

import structlog

from tgtkeeper import KerberosManager, KerberosPaths, ManagerOptions
from tgtkeeper.config import Enablement
from tgtkeeper.transport import CommandRunner


def simulated_kinit(argv, **kwargs):
    """Stand-in for subprocess.run that pretends kinit succeeded."""
    print(f"   [simulated] {' '.join(argv)}")
    return subprocess.CompletedProcess(argv, 0, stdout="Authenticated to Kerberos v5\n")


def main():
    """Demonstrate the TGT lifecycle inside a request handler."""

    print("=" * 70)
    print("tgtkeeper - Lambda TGT Lifecycle")
    print("=" * 70)
    print()

    work = Path(tempfile.mkdtemp(prefix="tgtkeeper-demo-"))
    task_dir = work / "task"
    write_dir = work / "tmp"
    (task_dir / "etc").mkdir(parents=True)
    write_dir.mkdir()

    template = Path(__file__).with_name("lambda-krb5.conf")
    (task_dir / "etc" / "lambda-krb5.conf").write_text(template.read_text())

    # ==========================================================================
    # EXAMPLE 1: Create the manager
    # ==========================================================================
    print("1. Create KerberosManager")
    print("-" * 40)

    manager = KerberosManager(
        options=ManagerOptions(
            principal="svc-report@EXAMPLE.COM",
            realm_kdc="kdc1.example.com",
            ticket_lifetime=timedelta(seconds=2),
        ),
        logger=structlog.get_logger("demo"),
        paths=KerberosPaths.under(task_dir, write_dir),
        enablement=Enablement(is_linux=True, function_name="demo-function"),
        runner=CommandRunner(run_fn=simulated_kinit),
    )

    print(f"   Enabled: {manager.enabled}")
    print(f"   State: {manager.state.name}")
    print()

    # ==========================================================================
    # EXAMPLE 2: Init
    # ==========================================================================
    print("2. Init (resolve, render, provision, kinit)")
    print("-" * 40)

    manager.init(b"\x05\x02\x00\x00\x00\x00\x00\x00")
    print(f"   State: {manager.state.name}")
    print(f"   Command: {manager.acquisition_command}")
    print()
    print("   Rendered krb5.conf:")
    for line in (write_dir / "lambda-krb.conf").read_text().splitlines():
        print(f"     {line}")
    print()

    # ==========================================================================
    # EXAMPLE 3: Requests
    # ==========================================================================
    print("3. Handle requests")
    print("-" * 40)

    for i in range(3):
        manager.refresh()
        print(f"   request {i}: ticket age {manager.ticket_age:.2f}s")
        time.sleep(1.1)
    print()

    # ==========================================================================
    # EXAMPLE 4: Forced renewal and status
    # ==========================================================================
    print("4. Forced renewal")
    print("-" * 40)

    manager.refresh(force=True)
    for key, value in manager.status().items():
        print(f"   {key}: {value}")
    print()

    print("=" * 70)
    print("Demo complete")
    print("=" * 70)


if __name__ == "__main__":
    main()
