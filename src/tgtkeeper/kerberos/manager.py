"""
tgtkeeper Kerberos Manager

Keeps a Kerberos TGT alive inside a short-lived compute process that has
no host-level Kerberos daemon.

Setup (init, once):
1. Resolve the realm KDC (static option, else DNS SRV)
2. Render krb5.conf from the shipped template, export KRB5_CONFIG
3. Write the keytab to the scratch directory
4. Run kinit for the principal

Hot path (refresh, per request):
- Lock-free age check; returns immediately while the ticket is fresh
- Otherwise one caller re-runs kinit behind the acquisition gate; the
  others re-check inside the gate and skip

When the process is not a Linux Lambda runtime the manager is disabled
and every operation is a no-op with no side effects.
"""

from __future__ import annotations

import os
import shutil
import threading
import time
from datetime import datetime, timezone
from typing import IO, Any, Callable, Dict, Optional, Union

import attrs
import structlog
from returns.result import Failure, Success

from tgtkeeper.config.environment import Enablement, EnvironmentExporter
from tgtkeeper.config.materializer import ConfigMaterializer, TemplateContext
from tgtkeeper.core.clock import AtomicTimestamp
from tgtkeeper.core.exceptions import (
    ConfigurationError,
    MaterializationError,
    StateError,
    TgtKeeperError,
)
from tgtkeeper.core.types import AcquisitionCommand, KerberosPaths, ManagerOptions
from tgtkeeper.kerberos.lifecycle import (
    AcquisitionFailed,
    AcquisitionStarted,
    AcquisitionSucceeded,
    LifecycleState,
    LifecycleStateMachine,
    Provisioned,
    create_lifecycle_machine,
)
from tgtkeeper.transport.kdc_resolver import KdcResolver
from tgtkeeper.transport.kinit import CommandRunner

logger = structlog.get_logger()

Keytab = Union[bytes, bytearray, memoryview, IO[bytes]]

_IN_FLIGHT = frozenset({LifecycleState.ACQUIRING, LifecycleState.REFRESHING})


def _require_options(instance: Any, attribute: attrs.Attribute, value: Any) -> None:
    if value is None:
        raise ConfigurationError("options must not be None")
    if not isinstance(value, ManagerOptions):
        raise ConfigurationError(
            f"options must be ManagerOptions, got {type(value).__name__}"
        )


@attrs.define
class KerberosManager:
    """
    Ticket-granting ticket lifecycle manager.

    Example:
        manager = KerberosManager(
            options=ManagerOptions(
                principal="svc@EXAMPLE.COM",
                realm_kdc_srv_name="_kerberos._udp.example.com",
                ticket_lifetime=timedelta(hours=8),
            ),
            logger=structlog.get_logger("handler"),
        )
        with open("svc.keytab", "rb") as keytab:
            manager.init(keytab)

        def handler(event, context):
            manager.refresh()
            ...

    Collaborators (resolver, materializer, runner, clock) default to the
    real implementations and can be replaced for testing.
    """

    options: ManagerOptions = attrs.field(validator=_require_options)
    logger: Optional[Any] = None
    paths: KerberosPaths = attrs.Factory(KerberosPaths.lambda_defaults)
    enablement: Enablement = attrs.Factory(Enablement.detect)
    resolver: Optional[KdcResolver] = None
    materializer: Optional[ConfigMaterializer] = None
    runner: Optional[CommandRunner] = None
    clock: Callable[[], float] = time.monotonic

    _command: Optional[AcquisitionCommand] = attrs.field(default=None, init=False)
    _last_acquired: AtomicTimestamp = attrs.field(factory=AtomicTimestamp, init=False)
    _gate: threading.Lock = attrs.field(factory=threading.Lock, init=False)
    _machine: LifecycleStateMachine = attrs.field(default=None, init=False)

    def __attrs_post_init__(self) -> None:
        if self.logger is None:
            self.logger = structlog.get_logger("tgtkeeper")
            self.logger.warning("no_logger_specified", fallback="structlog console")

        if self.resolver is None:
            self.resolver = KdcResolver(logger=self.logger)
        if self.materializer is None:
            self.materializer = ConfigMaterializer(
                paths=self.paths,
                exporter=EnvironmentExporter(logger=self.logger),
                logger=self.logger,
            )
        if self.runner is None:
            self.runner = CommandRunner(logger=self.logger)

        self._machine = create_lifecycle_machine(self.options.principal, logger=self.logger)

        self.logger.info(
            "kerberos_manager_created",
            enabled=self.enabled,
            is_linux=self.enablement.is_linux,
            function_name=self.enablement.function_name,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        """True only on Linux inside a Lambda runtime."""
        return self.enablement.enabled

    @property
    def state(self) -> LifecycleState:
        return self._machine.state

    @property
    def lifecycle(self) -> LifecycleStateMachine:
        return self._machine

    @property
    def acquisition_command(self) -> Optional[AcquisitionCommand]:
        return self._command

    @property
    def last_acquired_at(self) -> Optional[datetime]:
        """Wall-clock time of the last successful kinit."""
        return self._last_acquired.read()[1]

    @property
    def ticket_age(self) -> Optional[float]:
        """Seconds since the last successful kinit, None if never."""
        return self._last_acquired.age(self.clock())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def init(self, keytab: Keytab) -> None:
        """
        Provision Kerberos and acquire the initial TGT.

        Must be called exactly once, before any refresh(), from a single
        thread.

        Raises:
            StateError: called on an already initialized manager
            MaterializationError: template, config or keytab I/O failed
            AcquisitionError: kinit failed (the manager stays PROVISIONED
                and refresh() retries)
        """
        if not self.enabled:
            return

        if self._machine.state is not LifecycleState.UNINITIALIZED:
            raise StateError(f"init() called in state {self._machine.state.name}")

        self._command = AcquisitionCommand.kinit(
            self.paths.kinit_path, self.paths.keytab_target, self.options.principal
        )

        self.logger.info("resolving_realm_kdc")
        self._resolve_kdc()

        self.logger.info("persisting_krb5_configuration")
        config_path = self.materializer.materialize(
            TemplateContext.build(self.options, self.paths)
        )

        self.logger.info("persisting_krb5_keytab", target=str(self.paths.keytab_target))
        self._write_keytab(keytab)

        self._transition(
            Provisioned(realm_kdc=self.options.realm_kdc or "", config_path=str(config_path))
        )

        self.logger.info("initializing_tgt", principal=self.options.principal)
        with self._gate:
            self._acquire(reason="initial")

    def refresh(self, force: bool = False) -> None:
        """
        Re-acquire the TGT if it is older than the ticket lifetime.

        Cheap when the ticket is fresh: no lock, file, network or process
        is touched. Concurrent stale callers result in a single kinit.

        Args:
            force: re-acquire regardless of ticket age

        Raises:
            StateError: called before init()
            AcquisitionError: kinit failed; the ticket stays stale
        """
        if not self.enabled:
            return

        if not force and not self._is_stale():
            return

        with self._gate:
            if self._command is None or self._machine.state is LifecycleState.UNINITIALIZED:
                raise StateError("refresh() called before init()")

            # Another caller may have renewed while we waited on the gate
            if not force and not self._is_stale():
                return

            self.logger.info(
                "tgt_expired_regenerating",
                forced=force,
                age=self.ticket_age,
                lifetime=self.options.ticket_lifetime.total_seconds(),
            )
            self._acquire(reason="forced" if force else "expired")

    def list_tickets(self) -> Optional[str]:
        """
        Output of klist for the credential cache.

        Returns None when the manager is disabled.

        Raises:
            StateError: called before init()
            AcquisitionError: klist failed
        """
        if not self.enabled:
            return None
        if self._machine.state is LifecycleState.UNINITIALIZED:
            raise StateError("list_tickets() called before init()")
        return self.runner.list_tickets(
            str(self.paths.klist_path),
            str(self.paths.ccache_target),
            timeout=self.options.acquisition_timeout.total_seconds(),
        )

    def status(self) -> Dict[str, Any]:
        """Health snapshot for diagnostics endpoints."""
        ctx = self._machine.context
        last = self.last_acquired_at
        return {
            "enabled": self.enabled,
            "state": self._machine.state.name,
            "principal": self.options.principal,
            "realm_kdc": self.options.realm_kdc or "",
            "acquisitions": ctx.acquisitions,
            "failures": ctx.failures,
            "last_error": ctx.last_error,
            "last_acquired_at": last.isoformat() if last else None,
            "ticket_age": self.ticket_age,
            "ticket_lifetime": self.options.ticket_lifetime.total_seconds(),
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _is_stale(self) -> bool:
        age = self._last_acquired.age(self.clock())
        return age is None or age >= self.options.ticket_lifetime.total_seconds()

    def _resolve_kdc(self) -> None:
        result = self.resolver.resolve(self.options)
        if isinstance(result, Success):
            resolved = result.unwrap()
            self.options = self.options.with_realm_kdc(resolved.host)
            self.logger.info(
                "realm_kdc_resolved", host=resolved.host, source=resolved.source.name
            )
        else:
            self.logger.info("realm_kdc_unresolved", reason=result.failure())

    def _write_keytab(self, keytab: Keytab) -> None:
        target = self.paths.keytab_target
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as fh:
                if isinstance(keytab, (bytes, bytearray, memoryview)):
                    fh.write(keytab)
                else:
                    shutil.copyfileobj(keytab, fh)
        except OSError as e:
            raise MaterializationError(
                f"Cannot write keytab {target}: {e}", path=str(target)
            ) from e

    def _acquire(self, reason: str) -> None:
        """
        Run kinit and record the result. Caller holds the gate.

        Every exit path leaves ACQUIRING/REFRESHING: the lifecycle moves
        to READY on success, else back to PROVISIONED or READY with the
        old timestamp kept.
        """
        self._transition(AcquisitionStarted(reason=reason))
        try:
            self.runner.acquire(
                self._command, self.options.acquisition_timeout.total_seconds()
            )
            monotonic = self.clock()
            wall = datetime.now(timezone.utc)
            # Lifecycle first: a rejected success must not move the timestamp
            self._transition(AcquisitionSucceeded(acquired_at=wall, monotonic=monotonic))
            self._last_acquired.advance(monotonic, wall)
        except Exception as e:
            error = e.message if isinstance(e, TgtKeeperError) else str(e)
            if self._machine.state in _IN_FLIGHT:
                self._transition(AcquisitionFailed(error=error))
            self.logger.error("tgt_acquisition_failed", reason=reason, error=error)
            raise

        self.logger.info("tgt_acquired", reason=reason, completed_at=wall.isoformat())

    def _transition(self, event: Any) -> None:
        result = self._machine.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())
