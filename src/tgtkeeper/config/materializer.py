"""
tgtkeeper krb5.conf Materializer

Renders the Kerberos client configuration from a template shipped in the
read-only installation directory into the writable scratch directory,
then points KRB5_CONFIG at the result.

Template vocabulary (fixed):
    {{ realm_kdc }}    resolved KDC host, empty when unresolved
    {{ principal }}    Kerberos principal
    {{ realm }}        realm part of the principal
    {{ keytab_path }}  provisioned keytab
    {{ ccache_path }}  credential cache
    {{ config_path }}  rendered configuration

Any other {{ token }} is left verbatim.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict

import attrs
import structlog

from tgtkeeper.config.environment import KRB5_CONFIG_ENV_KEY, EnvironmentExporter
from tgtkeeper.core.exceptions import MaterializationError
from tgtkeeper.core.types import KerberosPaths, ManagerOptions

logger = structlog.get_logger()

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@attrs.define(frozen=True, slots=True)
class TemplateContext:
    """Values bound to the template placeholders."""

    realm_kdc: str
    principal: str
    realm: str
    keytab_path: str
    ccache_path: str
    config_path: str

    @classmethod
    def build(cls, options: ManagerOptions, paths: KerberosPaths) -> TemplateContext:
        return cls(
            realm_kdc=options.realm_kdc or "",
            principal=options.principal,
            realm=options.realm,
            keytab_path=str(paths.keytab_target),
            ccache_path=str(paths.ccache_target),
            config_path=str(paths.config_target),
        )

    def as_dict(self) -> Dict[str, str]:
        return attrs.asdict(self)


def render_template(template: str, context: TemplateContext) -> str:
    """Substitute known placeholders; unknown ones pass through untouched."""
    values = context.as_dict()

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, template)


@attrs.define
class ConfigMaterializer:
    """
    Read, render and write krb5.conf, then export KRB5_CONFIG.

    Example:
        materializer = ConfigMaterializer(paths=KerberosPaths.lambda_defaults())
        materializer.materialize(TemplateContext.build(options, paths))
    """

    paths: KerberosPaths
    exporter: EnvironmentExporter = attrs.Factory(EnvironmentExporter)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def read_template(self) -> str:
        source = self.paths.config_source
        self._logger.info("krb5_template_reading", source=str(source))
        try:
            return source.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise MaterializationError(
                f"Cannot read krb5 template {source}: {e}", path=str(source)
            ) from e

    def write_config(self, content: str) -> Path:
        target = self.paths.config_target
        try:
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise MaterializationError(
                f"Cannot write krb5 config {target}: {e}", path=str(target)
            ) from e
        self._logger.info("krb5_config_written", target=str(target), size=len(content))
        return target

    def materialize(self, context: TemplateContext) -> Path:
        """
        Render the template for context and publish it.

        Returns:
            Path of the rendered configuration

        Raises:
            MaterializationError: template unreadable or target unwritable
        """
        rendered = render_template(self.read_template(), context)
        target = self.write_config(rendered)
        self.exporter.export(KRB5_CONFIG_ENV_KEY, str(target))
        return target
