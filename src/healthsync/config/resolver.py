"""
Configuration resolution and environment variable substitution.
"""

import os
import re
from collections.abc import Mapping
from typing import Any

# ${VAR} or ${VAR:-default}
_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def resolve_config(config_data: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Resolve ``${VAR_NAME}`` and ``${VAR_NAME:-default}`` placeholders.

    Unset variables without a default are left as written, so validation
    can point at them.

    Args:
        config_data: Configuration dictionary
        environ: Variables to substitute from (default: ``os.environ``)
    """
    return _resolve_value(config_data, os.environ if environ is None else environ)


def _resolve_value(value: Any, environ: Mapping[str, str]) -> Any:
    """Recursively resolve values in configuration."""
    if isinstance(value, dict):
        return {k: _resolve_value(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_value(item, environ) for item in value]
    if isinstance(value, str):

        def replace(match: re.Match) -> str:
            name, default = match.group(1), match.group(2)
            if name in environ:
                return environ[name]
            return default if default is not None else match.group(0)

        return _VAR_PATTERN.sub(replace, value)
    return value


def has_unresolved(value: Any) -> bool:
    """Whether a resolved value still contains a ``${VAR}`` placeholder."""
    return isinstance(value, str) and _VAR_PATTERN.search(value) is not None
