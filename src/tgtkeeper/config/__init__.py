"""
tgtkeeper Configuration Module

Components:
- environment: Enablement detection and two-scope variable export
- materializer: krb5.conf template rendering
"""

from tgtkeeper.config.environment import (
    AWS_LAMBDA_FUNCTION_NAME_ENV_KEY,
    KRB5_CONFIG_ENV_KEY,
    Enablement,
    EnvironmentExporter,
    native_setenv,
)
from tgtkeeper.config.materializer import (
    ConfigMaterializer,
    TemplateContext,
    render_template,
)

__all__ = [
    "AWS_LAMBDA_FUNCTION_NAME_ENV_KEY",
    "KRB5_CONFIG_ENV_KEY",
    "Enablement",
    "EnvironmentExporter",
    "native_setenv",
    "ConfigMaterializer",
    "TemplateContext",
    "render_template",
]
