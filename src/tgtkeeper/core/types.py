"""
tgtkeeper Core Types

Fundamental type definitions shared by the resolver, the config
materializer and the lifecycle manager.

Design Principles:
- Immutable: All types use frozen attrs for safety
- Validated: Type constraints enforced at construction
- Snapshots: Discovered values produce a new instance, never a mutation
"""

from __future__ import annotations

import os
from datetime import timedelta
from enum import Enum, auto
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import attrs
from attrs import field, validators

from tgtkeeper.core.exceptions import ConfigurationError


# =============================================================================
# CONSTANTS
# =============================================================================

LAMBDA_WRITE_DIR = "/tmp"
LAMBDA_TASK_DIR = "/var/task"

LOCAL_BIN_DIR = LAMBDA_TASK_DIR + "/local"
LOCAL_ETC_DIR = LAMBDA_TASK_DIR + "/etc"

DEFAULT_TICKET_LIFETIME = timedelta(hours=8)
DEFAULT_ACQUISITION_TIMEOUT = timedelta(seconds=60)
DEFAULT_DNS_LIFETIME = 5.0


# =============================================================================
# VALIDATORS
# =============================================================================


def _non_empty_str(instance: Any, attribute: attrs.Attribute, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{attribute.name} must be a non-empty string")


def _optional_str(instance: Any, attribute: attrs.Attribute, value: Any) -> None:
    if value is not None and not isinstance(value, str):
        raise ConfigurationError(f"{attribute.name} must be a string or None")


def _positive_timedelta(instance: Any, attribute: attrs.Attribute, value: Any) -> None:
    if not isinstance(value, timedelta):
        raise ConfigurationError(f"{attribute.name} must be a timedelta")
    if value <= timedelta(0):
        raise ConfigurationError(f"{attribute.name} must be positive, got {value}")


def _empty_to_none(value: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# =============================================================================
# OPTIONS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ManagerOptions:
    """
    Options supplied to the ticket lifecycle manager.

    Attributes:
        principal: Kerberos principal the TGT is acquired for
        realm_kdc: Static KDC host; wins over DNS discovery
        realm_kdc_srv_name: DNS SRV record queried when realm_kdc is unset
        ticket_lifetime: Age after which the TGT is re-acquired
        acquisition_timeout: Upper bound on a single kinit run
        dns_lifetime: Upper bound (seconds) on the SRV query

    Empty strings for the optional KDC fields are treated as unset.
    """

    principal: str = field(validator=_non_empty_str)
    realm_kdc: Optional[str] = field(
        default=None, converter=_empty_to_none, validator=_optional_str
    )
    realm_kdc_srv_name: Optional[str] = field(
        default=None, converter=_empty_to_none, validator=_optional_str
    )
    ticket_lifetime: timedelta = field(
        default=DEFAULT_TICKET_LIFETIME, validator=_positive_timedelta
    )
    acquisition_timeout: timedelta = field(
        default=DEFAULT_ACQUISITION_TIMEOUT, validator=_positive_timedelta
    )
    dns_lifetime: float = field(
        default=DEFAULT_DNS_LIFETIME,
        validator=[validators.instance_of((int, float)), validators.gt(0)],
    )

    @property
    def realm(self) -> str:
        """Realm part of the principal (empty if the principal has none)."""
        if "@" not in self.principal:
            return ""
        return self.principal[self.principal.rfind("@") + 1 :]

    def with_realm_kdc(self, host: str) -> ManagerOptions:
        """Return a snapshot with the discovered KDC folded in."""
        return attrs.evolve(self, realm_kdc=host)

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> ManagerOptions:
        """
        Build options from environment variables.

        Reads:
            KERBEROS_PRINCIPAL (required)
            KERBEROS_REALM_KDC
            KERBEROS_REALM_KDC_SRV_NAME
            KERBEROS_TICKET_LIFETIME (seconds)
            KERBEROS_ACQUISITION_TIMEOUT (seconds)

        Raises:
            ConfigurationError: principal missing or a number unparsable
        """
        if environ is None:
            environ = os.environ

        principal = environ.get("KERBEROS_PRINCIPAL", "")
        if not principal:
            raise ConfigurationError("KERBEROS_PRINCIPAL is not set")

        return cls(
            principal=principal,
            realm_kdc=environ.get("KERBEROS_REALM_KDC"),
            realm_kdc_srv_name=environ.get("KERBEROS_REALM_KDC_SRV_NAME"),
            ticket_lifetime=_seconds_from_env(
                environ, "KERBEROS_TICKET_LIFETIME", DEFAULT_TICKET_LIFETIME
            ),
            acquisition_timeout=_seconds_from_env(
                environ, "KERBEROS_ACQUISITION_TIMEOUT", DEFAULT_ACQUISITION_TIMEOUT
            ),
        )


def _seconds_from_env(
    environ: Mapping[str, str], key: str, default: timedelta
) -> timedelta:
    raw = environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return timedelta(seconds=float(raw))
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number of seconds, got {raw!r}") from e


# =============================================================================
# PATHS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class KerberosPaths:
    """
    Process-wide file locations used by the manager.

    The read-only installation directory holds the template and the
    Kerberos binaries; everything the manager writes lives in the
    writable scratch directory.
    """

    config_source: Path = field(converter=Path)
    config_target: Path = field(converter=Path)
    keytab_target: Path = field(converter=Path)
    ccache_target: Path = field(converter=Path)
    kinit_path: Path = field(converter=Path)
    klist_path: Path = field(converter=Path)

    @classmethod
    def lambda_defaults(cls) -> KerberosPaths:
        """Standard locations inside an AWS Lambda runtime."""
        return cls(
            config_source=LOCAL_ETC_DIR + "/lambda-krb5.conf",
            config_target=LAMBDA_WRITE_DIR + "/lambda-krb.conf",
            keytab_target=LAMBDA_WRITE_DIR + "/lambda.keytab",
            ccache_target=LAMBDA_WRITE_DIR + "/lambda.ccache",
            kinit_path=LOCAL_BIN_DIR + "/kinit",
            klist_path=LOCAL_BIN_DIR + "/klist",
        )

    @classmethod
    def under(cls, task_dir: os.PathLike, write_dir: os.PathLike) -> KerberosPaths:
        """Same layout as the Lambda defaults, rooted elsewhere."""
        task = Path(task_dir)
        write = Path(write_dir)
        return cls(
            config_source=task / "etc" / "lambda-krb5.conf",
            config_target=write / "lambda-krb.conf",
            keytab_target=write / "lambda.keytab",
            ccache_target=write / "lambda.ccache",
            kinit_path=task / "local" / "kinit",
            klist_path=task / "local" / "klist",
        )


# =============================================================================
# RESOLUTION
# =============================================================================


class KdcSource(Enum):
    """Where a resolved KDC came from."""

    STATIC = auto()
    DNS_SRV = auto()


@attrs.define(frozen=True, slots=True)
class ResolvedKdc:
    """A concrete KDC hostname and its origin."""

    host: str = field(validator=_non_empty_str)
    source: KdcSource = field(validator=validators.instance_of(KdcSource))

    def __str__(self) -> str:
        return self.host


# =============================================================================
# ACQUISITION
# =============================================================================


@attrs.define(frozen=True, slots=True)
class AcquisitionCommand:
    """
    Fixed credential issuance command.

    Format: <kinit> -V -kt <keytab> <principal>

    Passed to the OS as an argument vector, never through a shell.
    """

    executable: str
    arguments: Tuple[str, ...] = field(converter=tuple)

    @classmethod
    def kinit(cls, kinit_path: os.PathLike, keytab_path: os.PathLike, principal: str) -> AcquisitionCommand:
        return cls(
            executable=str(kinit_path),
            arguments=("-V", "-kt", str(keytab_path), principal),
        )

    @property
    def argv(self) -> Tuple[str, ...]:
        return (self.executable,) + self.arguments

    def __str__(self) -> str:
        return " ".join(self.argv)
