"""
tgtkeeper Runtime Environment

Detects whether the manager should act at all, and exports variables
into the process environment.

Enablement requires both:
- a Linux platform
- a non-empty AWS_LAMBDA_FUNCTION_NAME
"""

from __future__ import annotations

import ctypes
import ctypes.util
import os
import sys
from typing import Any, Callable, Mapping, MutableMapping, Optional

import attrs
import structlog

logger = structlog.get_logger()

AWS_LAMBDA_FUNCTION_NAME_ENV_KEY = "AWS_LAMBDA_FUNCTION_NAME"
KRB5_CONFIG_ENV_KEY = "KRB5_CONFIG"


# =============================================================================
# ENABLEMENT
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Enablement:
    """
    Facts deciding whether the manager performs any work.

    Computed once; when disabled every manager operation is a no-op.
    """

    is_linux: bool
    function_name: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return self.is_linux and bool(self.function_name)

    @classmethod
    def detect(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        platform: Optional[str] = None,
    ) -> Enablement:
        """Inspect the running platform and environment."""
        if environ is None:
            environ = os.environ
        if platform is None:
            platform = sys.platform
        return cls(
            is_linux=platform.startswith("linux"),
            function_name=environ.get(AWS_LAMBDA_FUNCTION_NAME_ENV_KEY) or None,
        )


# =============================================================================
# ENVIRONMENT EXPORT
# =============================================================================


_libc: Any = None


def _load_libc() -> Any:
    global _libc
    if _libc is None:
        name = ctypes.util.find_library("c")
        if name is None:
            return None
        lib = ctypes.CDLL(name, use_errno=True)
        if not hasattr(lib, "setenv"):
            return None
        lib.setenv.argtypes = [ctypes.c_char_p, ctypes.c_char_p, ctypes.c_int]
        lib.setenv.restype = ctypes.c_int
        _libc = lib
    return _libc


def native_setenv(key: str, value: str) -> bool:
    """
    Set a variable in the C-level process environment.

    Native libraries loaded in-process (libkrb5 behind GSSAPI bindings)
    read getenv() directly and do not see os.environ.

    Returns:
        True if set, False when the platform has no libc setenv
    """
    libc = _load_libc()
    if libc is None:
        return False
    if libc.setenv(os.fsencode(key), os.fsencode(value), 1) != 0:
        err = ctypes.get_errno()
        raise OSError(err, f"setenv({key}) failed: {os.strerror(err)}")
    return True


@attrs.define
class EnvironmentExporter:
    """
    Export a variable into both environment scopes.

    - environ: the interpreter mapping (os.environ), inherited by
      children spawned through subprocess
    - native_set: the OS-level store, seen by native code and by
      processes spawned by other means

    Assigning into os.environ already calls os.putenv where the platform
    has it, so native_set only runs when that path does not reach the
    OS-level store (no putenv, or a mapping other than os.environ).
    """

    environ: MutableMapping[str, str] = os.environ
    native_set: Callable[[str, str], bool] = native_setenv
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def syncs_native(self) -> bool:
        """True when writes to environ already reach the OS-level store."""
        return self.environ is os.environ and hasattr(os, "putenv")

    def export(self, key: str, value: str) -> None:
        self.environ[key] = value
        if not self.syncs_native and not self.native_set(key, value):
            self._logger.debug("native_environment_unavailable", key=key)
        self._logger.info("environment_exported", key=key, value=value)
