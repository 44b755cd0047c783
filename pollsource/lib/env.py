"""Environment variable expansion for source configuration.

Credentials and connection strings normally live in the environment (or
a ``.env`` file read with python-dotenv), and configs reference them as
``${DB_PASSWORD}``. ``${VAR:-fallback}`` supplies a default.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file"]

ENV_VAR_PATTERN = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load a ``.env`` file into the environment.

    Returns True if a file was found and loaded.
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(
    value: str,
    *,
    strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in a string.

    Unset variables without a default are left untouched, or raise
    ``KeyError`` when ``strict`` is set.

    Example:
        >>> expand_env_vars("${DB_HOST:-localhost}:1433", environ={})
        'localhost:1433'
    """
    env = os.environ if environ is None else environ

    def replace(match: "re.Match[str]") -> str:
        name = match.group("name")
        if name in env:
            return env[name]
        default = match.group("default")
        if default is not None:
            return default
        if strict:
            raise KeyError(f"Environment variable not set: {name}")
        return match.group(0)

    return ENV_VAR_PATTERN.sub(replace, value)


def _expand(value: Any, strict: bool, environ: Optional[Mapping[str, str]]) -> Any:
    if isinstance(value, str):
        return expand_env_vars(value, strict=strict, environ=environ)
    if isinstance(value, dict):
        return {k: _expand(v, strict, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(item, strict, environ) for item in value]
    return value


def expand_options(
    options: Dict[str, Any],
    *,
    strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Return a copy of ``options`` with env references expanded at any depth."""
    return {k: _expand(v, strict, environ) for k, v in options.items()}
