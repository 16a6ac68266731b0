"""
Pytest configuration and shared fixtures for tgtkeeper tests.

No test touches the network, the real /tmp layout, os.environ or a
real kinit: DNS queries, command runs and environment exports are all
replaced with recording fakes.
"""

import subprocess
import threading
import time
from datetime import timedelta
from types import SimpleNamespace

import pytest
import structlog

from tgtkeeper.config.environment import Enablement, EnvironmentExporter
from tgtkeeper.config.materializer import ConfigMaterializer
from tgtkeeper.core.types import KerberosPaths, ManagerOptions
from tgtkeeper.kerberos.manager import KerberosManager
from tgtkeeper.transport.kdc_resolver import KdcResolver
from tgtkeeper.transport.kinit import CommandRunner


TEMPLATE = """\
[libdefaults]
    default_realm = {{ realm }}
    default_ccache_name = FILE:{{ ccache_path }}
    default_keytab_name = FILE:{{ keytab_path }}
    ticket_lifetime = {{ ticket_lifetime }}

[realms]
    {{ realm }} = {
        kdc = {{ realm_kdc }}
    }
"""

KEYTAB_BYTES = b"\x05\x02\x00\x00\x00\x00\x00\x00"


# =============================================================================
# FAKES
# =============================================================================


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRun:
    """Recording replacement for subprocess.run."""

    def __init__(self, returncode: int = 0, output: str = "", delay: float = 0.0) -> None:
        self.returncode = returncode
        self.output = output
        self.delay = delay
        self.exception = None
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, argv, **kwargs):
        with self._lock:
            self.calls.append((list(argv), kwargs))
        if self.delay:
            time.sleep(self.delay)
        if self.exception is not None:
            raise self.exception
        return subprocess.CompletedProcess(argv, self.returncode, stdout=self.output)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self.calls)


class FakeSrvQuery:
    """Recording replacement for the DNS SRV query."""

    def __init__(self, targets=(), error=None) -> None:
        self.targets = list(targets)
        self.error = error
        self.calls = []

    def __call__(self, name, lifetime):
        self.calls.append((name, lifetime))
        if self.error is not None:
            raise self.error
        return [SimpleNamespace(target=t, port=88, priority=0, weight=0) for t in self.targets]


class FakeNativeEnv:
    """Recording replacement for libc setenv."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.values = {}

    def __call__(self, key, value):
        if not self.available:
            return False
        self.values[key] = value
        return True


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def paths(tmp_path) -> KerberosPaths:
    """Lambda layout relocated under tmp_path, template installed."""
    task_dir = tmp_path / "task"
    write_dir = tmp_path / "scratch"
    (task_dir / "etc").mkdir(parents=True)
    write_dir.mkdir()
    result = KerberosPaths.under(task_dir, write_dir)
    result.config_source.write_text(TEMPLATE)
    return result


@pytest.fixture
def options() -> ManagerOptions:
    return ManagerOptions(
        principal="svc@REALM",
        realm_kdc="",
        realm_kdc_srv_name="_kerberos._udp.REALM",
        ticket_lifetime=timedelta(hours=8),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_run() -> FakeRun:
    return FakeRun(output="Authenticated to Kerberos v5\n")


@pytest.fixture
def srv_query() -> FakeSrvQuery:
    return FakeSrvQuery(targets=["kdc1.realm.example."])


@pytest.fixture
def environ() -> dict:
    return {}


@pytest.fixture
def native_env() -> FakeNativeEnv:
    return FakeNativeEnv()


@pytest.fixture
def exporter(environ, native_env) -> EnvironmentExporter:
    return EnvironmentExporter(environ=environ, native_set=native_env)


@pytest.fixture
def enabled() -> Enablement:
    return Enablement(is_linux=True, function_name="test-function")


@pytest.fixture
def disabled() -> Enablement:
    return Enablement(is_linux=True, function_name=None)


@pytest.fixture
def make_manager(options, paths, enabled, srv_query, exporter, fake_run, clock):
    """Factory for managers wired to the recording fakes."""

    def _make(**overrides) -> KerberosManager:
        kwargs = dict(
            options=options,
            logger=structlog.get_logger("test"),
            paths=paths,
            enablement=enabled,
            resolver=KdcResolver(query=srv_query),
            materializer=ConfigMaterializer(paths=paths, exporter=exporter),
            runner=CommandRunner(run_fn=fake_run),
            clock=clock,
        )
        kwargs.update(overrides)
        return KerberosManager(**kwargs)

    return _make


@pytest.fixture
def manager(make_manager) -> KerberosManager:
    return make_manager()


@pytest.fixture
def ready_manager(manager) -> KerberosManager:
    manager.init(KEYTAB_BYTES)
    return manager


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real KDC and kinit"
    )
