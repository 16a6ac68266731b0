"""
Unit tests for tgtkeeper.kerberos.manager module.

Tests init sequencing, the refresh fast path and gate, failure
semantics and the disabled no-op behaviour.
"""

import subprocess
import threading
from datetime import datetime, timedelta
from io import BytesIO

import pytest
import structlog
from structlog.testing import capture_logs

from tgtkeeper.config.environment import Enablement
from tgtkeeper.core.exceptions import (
    AcquisitionError,
    AcquisitionTimeout,
    ConfigurationError,
    InvariantViolation,
    MaterializationError,
    StateError,
)
from tgtkeeper.core.state_machine import DEFAULT_HISTORY_LIMIT
from tgtkeeper.core.types import ManagerOptions
from tgtkeeper.kerberos import manager as manager_module
from tgtkeeper.kerberos.lifecycle import LifecycleState
from tgtkeeper.kerberos.manager import KerberosManager
from tgtkeeper.transport.kdc_resolver import KdcResolver
from tests.conftest import KEYTAB_BYTES, FakeSrvQuery


EIGHT_HOURS = timedelta(hours=8).total_seconds()


class TestManagerCreation:
    """Tests for KerberosManager construction."""

    def test_none_options_rejected(self):
        with pytest.raises(ConfigurationError):
            KerberosManager(options=None)

    def test_wrong_options_type_rejected(self):
        with pytest.raises(ConfigurationError):
            KerberosManager(options={"principal": "svc@R"})

    def test_initial_state(self, manager):
        assert manager.enabled
        assert manager.state == LifecycleState.UNINITIALIZED
        assert manager.last_acquired_at is None
        assert manager.ticket_age is None
        assert manager.acquisition_command is None

    def test_enablement_logged_once(self, make_manager):
        with capture_logs() as logs:
            make_manager()
        created = [e for e in logs if e["event"] == "kerberos_manager_created"]
        assert len(created) == 1
        assert created[0]["enabled"] is True
        assert created[0]["function_name"] == "test-function"

    def test_default_logger_warns(self, make_manager):
        with capture_logs() as logs:
            manager = make_manager(logger=None)
        assert manager.logger is not None
        assert any(e["event"] == "no_logger_specified" and e["log_level"] == "warning" for e in logs)

    def test_default_collaborators(self, options, disabled):
        manager = KerberosManager(options=options, enablement=disabled, logger=structlog.get_logger())
        assert manager.resolver is not None
        assert manager.materializer is not None
        assert manager.runner is not None


class TestInit:
    """Tests for KerberosManager.init."""

    def test_srv_scenario(self, manager, paths, environ, srv_query, fake_run):
        manager.init(KEYTAB_BYTES)

        assert manager.options.realm_kdc == "kdc1.realm.example"
        assert "kdc = kdc1.realm.example" in paths.config_target.read_text()
        assert environ["KRB5_CONFIG"] == str(paths.config_target)
        assert srv_query.calls == [("_kerberos._udp.REALM", 5.0)]
        assert fake_run.count == 1
        assert manager.state == LifecycleState.READY

    def test_caller_options_not_mutated(self, manager, options):
        manager.init(KEYTAB_BYTES)
        assert options.realm_kdc is None
        assert manager.options is not options

    def test_srv_no_records_scenario(self, make_manager, paths, environ, fake_run):
        manager = make_manager(resolver=KdcResolver(query=FakeSrvQuery(targets=[])))

        with capture_logs() as logs:
            manager.init(KEYTAB_BYTES)

        assert (manager.options.realm_kdc or "") == ""
        assert "kdc = \n" in paths.config_target.read_text()
        assert environ["KRB5_CONFIG"] == str(paths.config_target)
        assert any(e["log_level"] == "warning" for e in logs)
        assert fake_run.count == 1
        assert manager.state == LifecycleState.READY

    def test_acquisition_command(self, ready_manager, paths, fake_run):
        expected = (str(paths.kinit_path), "-V", "-kt", str(paths.keytab_target), "svc@REALM")
        assert ready_manager.acquisition_command.argv == expected
        assert tuple(fake_run.calls[0][0]) == expected

    def test_keytab_bytes_written(self, ready_manager, paths):
        assert paths.keytab_target.read_bytes() == KEYTAB_BYTES
        assert paths.keytab_target.stat().st_mode & 0o777 == 0o600

    def test_keytab_stream_written(self, manager, paths):
        manager.init(BytesIO(KEYTAB_BYTES))
        assert paths.keytab_target.read_bytes() == KEYTAB_BYTES

    def test_keytab_truncated(self, manager, paths):
        paths.keytab_target.write_bytes(b"x" * 1024)
        manager.init(KEYTAB_BYTES)
        assert paths.keytab_target.read_bytes() == KEYTAB_BYTES

    def test_records_acquisition_time(self, ready_manager, clock):
        assert ready_manager.last_acquired_at is not None
        assert ready_manager.ticket_age == 0.0
        clock.advance(60)
        assert ready_manager.ticket_age == 60.0

    def test_second_init_rejected(self, ready_manager):
        with pytest.raises(StateError):
            ready_manager.init(KEYTAB_BYTES)

    def test_template_missing_is_fatal(self, manager, paths, fake_run):
        paths.config_source.unlink()
        with pytest.raises(MaterializationError):
            manager.init(KEYTAB_BYTES)
        assert fake_run.count == 0
        assert not paths.keytab_target.exists()
        assert manager.state == LifecycleState.UNINITIALIZED

    def test_keytab_write_failure_is_fatal(self, manager, paths, fake_run):
        paths.keytab_target.mkdir()
        with pytest.raises(MaterializationError):
            manager.init(KEYTAB_BYTES)
        assert fake_run.count == 0

    def test_acquisition_failure_surfaces(self, manager, fake_run):
        fake_run.returncode = 1
        with pytest.raises(AcquisitionError):
            manager.init(KEYTAB_BYTES)
        assert manager.last_acquired_at is None
        assert manager.state == LifecycleState.PROVISIONED

    def test_refresh_retries_after_failed_init(self, manager, fake_run):
        fake_run.returncode = 1
        with pytest.raises(AcquisitionError):
            manager.init(KEYTAB_BYTES)

        fake_run.returncode = 0
        manager.refresh()

        assert fake_run.count == 2
        assert manager.state == LifecycleState.READY
        assert manager.last_acquired_at is not None


class TestRefresh:
    """Tests for KerberosManager.refresh."""

    def test_fresh_ticket_no_spawn(self, ready_manager, fake_run, clock):
        clock.advance(60)
        ready_manager.refresh()
        ready_manager.refresh()
        assert fake_run.count == 1  # init only

    def test_fresh_ticket_skips_gate(self, ready_manager, fake_run):
        ready_manager._gate.acquire()
        try:
            ready_manager.refresh()  # would deadlock if the gate were taken
        finally:
            ready_manager._gate.release()
        assert fake_run.count == 1

    def test_stale_ticket_renewed(self, ready_manager, fake_run, clock):
        clock.advance(EIGHT_HOURS)
        ready_manager.refresh()
        assert fake_run.count == 2
        assert ready_manager.ticket_age == 0.0

    def test_two_refreshes_one_spawn(self, ready_manager, fake_run, clock):
        clock.advance(EIGHT_HOURS + 1)
        ready_manager.refresh()
        clock.advance(10)
        ready_manager.refresh()
        assert fake_run.count == 2

    def test_force_always_spawns(self, ready_manager, fake_run):
        ready_manager.refresh(force=True)
        assert fake_run.count == 2
        ready_manager.refresh(force=True)
        assert fake_run.count == 3

    def test_refresh_before_init(self, manager, fake_run):
        with pytest.raises(StateError):
            manager.refresh()
        assert fake_run.count == 0

    def test_forced_refresh_before_init(self, manager):
        with pytest.raises(StateError):
            manager.refresh(force=True)

    def test_failed_renewal_keeps_timestamp(self, ready_manager, fake_run, clock):
        before = ready_manager.last_acquired_at
        clock.advance(EIGHT_HOURS + 1)
        fake_run.returncode = 2

        with pytest.raises(AcquisitionError) as exc_info:
            ready_manager.refresh()

        assert exc_info.value.returncode == 2
        assert ready_manager.last_acquired_at == before
        assert ready_manager.state == LifecycleState.READY
        assert ready_manager.status()["last_error"] is not None

    def test_failed_renewal_retried(self, ready_manager, fake_run, clock):
        clock.advance(EIGHT_HOURS + 1)
        fake_run.returncode = 1
        with pytest.raises(AcquisitionError):
            ready_manager.refresh()

        fake_run.returncode = 0
        ready_manager.refresh()

        assert fake_run.count == 3
        assert ready_manager.ticket_age == 0.0

    def test_timeout_passed_to_runner(self, make_manager, options, fake_run):
        manager = make_manager(
            options=ManagerOptions(
                principal=options.principal,
                realm_kdc="kdc",
                acquisition_timeout=timedelta(seconds=12),
            )
        )
        manager.init(KEYTAB_BYTES)
        assert fake_run.calls[0][1]["timeout"] == 12.0

    def test_concurrent_refresh_single_spawn(self, make_manager, clock):
        from tests.conftest import FakeRun
        from tgtkeeper.transport.kinit import CommandRunner

        slow_run = FakeRun(delay=0.05)
        manager = make_manager(runner=CommandRunner(run_fn=slow_run))
        manager.init(KEYTAB_BYTES)
        clock.advance(EIGHT_HOURS + 1)

        workers = 16
        barrier = threading.Barrier(workers)
        errors = []

        def call_refresh():
            barrier.wait()
            try:
                manager.refresh()
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=call_refresh) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert slow_run.count == 2  # init + exactly one renewal


class SteppedWallClock:
    """Stand-in for the datetime class whose now() is under test control."""

    def __init__(self, value: datetime) -> None:
        self.value = value

    def now(self, tz=None) -> datetime:
        return self.value


ACQUIRE_ERRORS = [
    pytest.param(RuntimeError("boom"), RuntimeError, id="unexpected"),
    pytest.param(subprocess.TimeoutExpired(["kinit"], 60), AcquisitionTimeout, id="timeout"),
    pytest.param(FileNotFoundError(2, "No such file"), AcquisitionError, id="spawn"),
]


class TestAcquisitionErrorPaths:
    """Every failed acquisition leaves the lifecycle ready to retry."""

    @pytest.mark.parametrize("error,raised", ACQUIRE_ERRORS)
    def test_renewal_error_returns_to_ready(self, ready_manager, fake_run, clock, error, raised):
        before = ready_manager.last_acquired_at
        clock.advance(EIGHT_HOURS + 1)
        fake_run.exception = error

        with pytest.raises(raised):
            ready_manager.refresh()

        assert ready_manager.state == LifecycleState.READY
        assert ready_manager.last_acquired_at == before
        assert ready_manager.status()["failures"] == 1

        fake_run.exception = None
        ready_manager.refresh()

        assert fake_run.count == 3
        assert ready_manager.ticket_age == 0.0

    @pytest.mark.parametrize("error,raised", ACQUIRE_ERRORS)
    def test_initial_error_returns_to_provisioned(self, manager, fake_run, error, raised):
        fake_run.exception = error

        with pytest.raises(raised):
            manager.init(KEYTAB_BYTES)

        assert manager.state == LifecycleState.PROVISIONED
        assert manager.last_acquired_at is None

        fake_run.exception = None
        manager.refresh()

        assert manager.state == LifecycleState.READY
        assert fake_run.count == 2

    def test_wall_clock_step_back(self, ready_manager, fake_run, clock, monkeypatch):
        first = ready_manager.last_acquired_at
        wall = SteppedWallClock(first - timedelta(minutes=5))
        monkeypatch.setattr(manager_module, "datetime", wall)

        clock.advance(EIGHT_HOURS)
        ready_manager.refresh()

        assert fake_run.count == 2
        assert ready_manager.state == LifecycleState.READY
        assert ready_manager.last_acquired_at == wall.value
        assert ready_manager.ticket_age == 0.0
        assert ready_manager.status()["failures"] == 0

        wall.value = first + timedelta(hours=16)
        clock.advance(EIGHT_HOURS)
        ready_manager.refresh()
        ready_manager.refresh(force=True)

        assert fake_run.count == 4
        assert ready_manager.state == LifecycleState.READY

    def test_rejected_success_keeps_timestamp(self, ready_manager, fake_run, clock):
        clock.advance(-10)  # monotonic source misbehaving

        with pytest.raises(InvariantViolation):
            ready_manager.refresh(force=True)

        assert ready_manager.state == LifecycleState.READY
        assert ready_manager.status()["acquisitions"] == 1

        clock.advance(EIGHT_HOURS + 10)
        ready_manager.refresh()

        assert fake_run.count == 3
        assert ready_manager.ticket_age == 0.0

    def test_trace_bounded_under_repeated_failure(self, ready_manager, fake_run, clock):
        clock.advance(EIGHT_HOURS + 1)
        fake_run.returncode = 1

        for _ in range(1000):
            with pytest.raises(AcquisitionError):
                ready_manager.refresh()

        assert len(ready_manager.lifecycle.get_trace()) == DEFAULT_HISTORY_LIMIT
        assert ready_manager.status()["failures"] == 1000
        assert ready_manager.state == LifecycleState.READY


class TestDisabled:
    """A disabled manager performs no side effects."""

    @pytest.fixture
    def disabled_manager(self, make_manager, disabled):
        return make_manager(enablement=disabled)

    def test_init_is_noop(self, disabled_manager, paths, environ, srv_query, fake_run, native_env):
        disabled_manager.init(KEYTAB_BYTES)

        assert list(paths.config_target.parent.iterdir()) == []
        assert environ == {}
        assert native_env.values == {}
        assert srv_query.calls == []
        assert fake_run.count == 0
        assert disabled_manager.state == LifecycleState.UNINITIALIZED

    def test_refresh_is_noop(self, disabled_manager, fake_run):
        disabled_manager.refresh()
        disabled_manager.refresh(force=True)
        assert fake_run.count == 0

    def test_list_tickets_is_none(self, disabled_manager, fake_run):
        assert disabled_manager.list_tickets() is None
        assert fake_run.count == 0

    def test_no_per_call_logging(self, disabled_manager):
        with capture_logs() as logs:
            disabled_manager.init(KEYTAB_BYTES)
            disabled_manager.refresh()
            disabled_manager.refresh(force=True)
        assert logs == []

    def test_non_linux_disabled(self, make_manager, fake_run):
        manager = make_manager(enablement=Enablement(is_linux=False, function_name="fn"))
        manager.init(KEYTAB_BYTES)
        assert not manager.enabled
        assert fake_run.count == 0


class TestDiagnostics:
    """Tests for list_tickets and status."""

    def test_list_tickets(self, ready_manager, paths, fake_run):
        out = ready_manager.list_tickets()
        assert out == "Authenticated to Kerberos v5\n"
        assert fake_run.calls[-1][0] == [str(paths.klist_path), "-c", str(paths.ccache_target)]

    def test_list_tickets_before_init(self, manager):
        with pytest.raises(StateError):
            manager.list_tickets()

    def test_status_ready(self, ready_manager):
        status = ready_manager.status()
        assert status["enabled"] is True
        assert status["state"] == "READY"
        assert status["principal"] == "svc@REALM"
        assert status["realm_kdc"] == "kdc1.realm.example"
        assert status["acquisitions"] == 1
        assert status["failures"] == 0
        assert status["ticket_age"] == 0.0
        assert status["ticket_lifetime"] == EIGHT_HOURS

    def test_status_uninitialized(self, manager):
        status = manager.status()
        assert status["state"] == "UNINITIALIZED"
        assert status["last_acquired_at"] is None
        assert status["ticket_age"] is None

    def test_lifecycle_trace(self, ready_manager, clock):
        clock.advance(EIGHT_HOURS)
        ready_manager.refresh()
        events = [t.event_type for t in ready_manager.lifecycle.get_trace()]
        assert events == [
            "Provisioned",
            "AcquisitionStarted",
            "AcquisitionSucceeded",
            "AcquisitionStarted",
            "AcquisitionSucceeded",
        ]
