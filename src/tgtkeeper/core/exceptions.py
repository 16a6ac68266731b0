"""
tgtkeeper Exception Types

Custom exceptions for ticket lifecycle errors.

Propagation:
- ResolutionError is absorbed by the resolver and logged
- Everything else propagates to the caller of init()/refresh()
"""

from typing import Optional, Sequence


class TgtKeeperError(Exception):
    """Base exception for all tgtkeeper errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(TgtKeeperError, ValueError):
    """
    Invalid or missing configuration.

    Raised at construction time; the manager never proceeds with
    partial state.
    """

    pass


class ResolutionError(TgtKeeperError):
    """
    KDC could not be resolved.

    Recoverable: the resolver reports it as a Failure and
    materialization continues with an empty KDC field.
    """

    pass


class MaterializationError(TgtKeeperError):
    """
    Config template or keytab could not be read or written.

    Fatal to init(); raised before any acquisition attempt.
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class AcquisitionError(TgtKeeperError):
    """
    The credential issuance command failed.

    Covers non-zero exit and spawn failure. The acquisition timestamp
    is never advanced when this is raised.
    """

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        argv: Sequence[str] = (),
        output: str = "",
    ) -> None:
        super().__init__(message, code=returncode)
        self.returncode = returncode
        self.argv = tuple(argv)
        self.output = output


class AcquisitionTimeout(AcquisitionError):
    """The credential issuance command did not exit within its bound."""

    def __init__(
        self,
        timeout: float,
        argv: Sequence[str] = (),
        output: str = "",
    ) -> None:
        super().__init__(
            f"Acquisition command did not exit within {timeout:g}s",
            argv=argv,
            output=output,
        )
        self.timeout = timeout


class StateError(TgtKeeperError):
    """
    Invalid state transition.

    An operation was attempted that is not valid in the current
    lifecycle state (e.g. refresh before init).
    """

    pass


class InvariantViolation(TgtKeeperError):
    """
    Lifecycle invariant was violated.

    Indicates the manager entered a state it must never reach, such as
    the acquisition timestamp moving backwards.
    """

    pass
