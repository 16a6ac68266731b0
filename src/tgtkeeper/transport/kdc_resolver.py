"""
tgtkeeper KDC Resolver

Produces a concrete KDC hostname for the realm.

Resolution order:
1. Static realm_kdc option (no network call)
2. DNS SRV lookup of realm_kdc_srv_name, first record as answered

No priority/weight re-sorting is applied; the answer order of the
system resolver is trusted. A missing KDC is not fatal: callers render
the config with an empty KDC field.
"""

from __future__ import annotations

from typing import Any, Callable, List

import attrs
import dns.exception
import dns.resolver
import structlog
from returns.result import Failure, Result, Success

from tgtkeeper.core.exceptions import ResolutionError
from tgtkeeper.core.types import KdcSource, ManagerOptions, ResolvedKdc

logger = structlog.get_logger()


# (srv_name, lifetime) -> SRV rdata in answer order
SrvQuery = Callable[[str, float], List[Any]]


def query_srv_records(srv_name: str, lifetime: float) -> List[Any]:
    """
    Query SRV records using the system-configured resolver.

    Returns:
        SRV rdata in the order the resolver answered; empty when the
        name exists but carries no SRV records

    Raises:
        ResolutionError: On NXDOMAIN, timeout or any other DNS failure
    """
    try:
        answers = dns.resolver.resolve(
            srv_name, "SRV", lifetime=lifetime, raise_on_no_answer=False
        )
    except dns.exception.DNSException as e:
        raise ResolutionError(f"SRV query for {srv_name} failed: {e}") from e

    return list(answers)


def srv_target_host(rdata: Any) -> str:
    """Target hostname of an SRV record without the root label dot."""
    return str(rdata.target).rstrip(".")


@attrs.define
class KdcResolver:
    """
    Resolve the realm KDC from options.

    The resolver never mutates the options it is given; the caller folds
    a successful result into a new snapshot:

        result = resolver.resolve(options)
        if isinstance(result, Success):
            options = options.with_realm_kdc(result.unwrap().host)

    Example:
        resolver = KdcResolver()
        resolver.resolve(ManagerOptions(
            principal="svc@REALM",
            realm_kdc_srv_name="_kerberos._udp.REALM",
        ))
    """

    query: SrvQuery = query_srv_records
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def resolve(self, options: ManagerOptions) -> Result[ResolvedKdc, str]:
        """
        Resolve the KDC for the given options.

        Returns:
            Success(ResolvedKdc) when a static or discovered KDC exists
            Failure(reason) when none was found
        """
        if options.realm_kdc:
            return Success(ResolvedKdc(host=options.realm_kdc, source=KdcSource.STATIC))

        if not options.realm_kdc_srv_name:
            self._logger.warning("realm_kdc_unspecified", reason="no static KDC or SRV name")
            return Failure("Realm KDC is unspecified")

        srv_name = options.realm_kdc_srv_name
        self._logger.info("kdc_srv_lookup", name=srv_name)

        try:
            records = self.query(srv_name, options.dns_lifetime)
        except ResolutionError as e:
            self._logger.error("kdc_srv_lookup_failed", name=srv_name, error=e.message)
            self._logger.warning("realm_kdc_unspecified", reason="SRV lookup failed")
            return Failure(e.message)

        if not records:
            self._logger.error("kdc_srv_no_results", name=srv_name)
            self._logger.warning("realm_kdc_unspecified", reason="SRV lookup returned no records")
            return Failure(f"SRV query for {srv_name} returned no results")

        host = srv_target_host(records[0])
        if not host:
            self._logger.warning("realm_kdc_unspecified", reason="SRV target is the root domain")
            return Failure(f"SRV query for {srv_name} returned an empty target")

        self._logger.info("kdc_srv_resolved", name=srv_name, host=host, answers=len(records))
        return Success(ResolvedKdc(host=host, source=KdcSource.DNS_SRV))
