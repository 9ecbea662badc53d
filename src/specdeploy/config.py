#!/usr/bin/env python3
"""
Pipeline configuration.

Defaults come from config_constants, an optional specdeploy.toml in the
working directory overlays them, and CLI flags overlay the result.
"""

from __future__ import annotations

import logging
import os
import shutil
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .config_constants import (
    APP_ID_SECRET_FIELD,
    APP_ID_SECRET_PATH,
    CONFIG_FILE,
    CONSUL_TEMPLATE_EXECUTABLE,
    DIGITALOCEAN_API_URL,
    DIGITALOCEAN_TOKEN_ENV,
    DOCTL_EXECUTABLE,
    PLATFORM_API,
    PLATFORM_BACKENDS,
    PLATFORM_DOCTL,
    PLATFORM_TIMEOUT,
    RENDERED_SPEC_FILE,
    RENDERER_BACKENDS,
    RENDERER_CONSUL_TEMPLATE,
    RENDER_TIMEOUT,
    SECRETS_BACKENDS,
    SECRETS_BACKEND_VAULT_CLI,
    SECRETS_BACKEND_VAULT_HTTP,
    SECRET_LOOKUP_TIMEOUT,
    TEMPLATE_FILE,
    VAULT_ADDR_ENV,
    VAULT_EXECUTABLE,
    VAULT_TOKEN_ENV,
)
from .errors import ConfigError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeEnvironment:
    """Process environment and executable lookup, injectable for tests."""

    variables: Mapping[str, str] = field(default_factory=dict)
    which: Callable[[str], Optional[str]] = shutil.which

    @classmethod
    def from_process(cls) -> "RuntimeEnvironment":
        return cls(variables=dict(os.environ), which=shutil.which)

    def get(self, name: str) -> str:
        return self.variables.get(name, '') or ''


@dataclass(frozen=True)
class PipelineConfig:
    working_dir: Path = field(default_factory=Path.cwd)
    template: Path = Path(TEMPLATE_FILE)
    output: Path = Path(RENDERED_SPEC_FILE)
    log_level: str = 'INFO'

    secrets_backend: str = SECRETS_BACKEND_VAULT_CLI
    address_env: str = VAULT_ADDR_ENV
    token_env: str = VAULT_TOKEN_ENV
    app_id_path: str = APP_ID_SECRET_PATH
    app_id_field: str = APP_ID_SECRET_FIELD
    secrets_timeout: float = SECRET_LOOKUP_TIMEOUT

    renderer_backend: str = RENDERER_CONSUL_TEMPLATE
    render_timeout: float = RENDER_TIMEOUT

    platform_backend: str = PLATFORM_DOCTL
    api_url: str = DIGITALOCEAN_API_URL
    platform_token_env: str = DIGITALOCEAN_TOKEN_ENV
    platform_timeout: float = PLATFORM_TIMEOUT

    @property
    def template_path(self) -> Path:
        return _resolve(self.working_dir, self.template)

    @property
    def output_path(self) -> Path:
        return _resolve(self.working_dir, self.output)

    def required_variables(self) -> list[str]:
        """Environment variables the configured backends need, in check order."""
        names = [self.address_env]
        if self.secrets_backend == SECRETS_BACKEND_VAULT_HTTP:
            names.append(self.token_env)
        if self.platform_backend == PLATFORM_API:
            names.append(self.platform_token_env)
        return names

    def required_executables(self) -> list[str]:
        """Executables the configured backends shell out to, in check order."""
        names = []
        if self.secrets_backend == SECRETS_BACKEND_VAULT_CLI:
            names.append(VAULT_EXECUTABLE)
        if self.renderer_backend == RENDERER_CONSUL_TEMPLATE:
            names.append(CONSUL_TEMPLATE_EXECUTABLE)
        if self.platform_backend == PLATFORM_DOCTL:
            names.append(DOCTL_EXECUTABLE)
        return names


def _resolve(base: Path, path: Path) -> Path:
    return path if path.is_absolute() else base / path


# TOML section/key -> PipelineConfig attribute
_TOML_KEYS = {
    ('pipeline', 'template'): 'template',
    ('pipeline', 'output'): 'output',
    ('pipeline', 'log_level'): 'log_level',
    ('secrets', 'backend'): 'secrets_backend',
    ('secrets', 'address_env'): 'address_env',
    ('secrets', 'token_env'): 'token_env',
    ('secrets', 'app_id_path'): 'app_id_path',
    ('secrets', 'app_id_field'): 'app_id_field',
    ('secrets', 'timeout'): 'secrets_timeout',
    ('renderer', 'backend'): 'renderer_backend',
    ('renderer', 'timeout'): 'render_timeout',
    ('platform', 'backend'): 'platform_backend',
    ('platform', 'api_url'): 'api_url',
    ('platform', 'token_env'): 'platform_token_env',
    ('platform', 'timeout'): 'platform_timeout',
}

_PATH_FIELDS = ('template', 'output')

_STRING_FIELDS = (
    'log_level',
    'secrets_backend',
    'address_env',
    'token_env',
    'app_id_path',
    'app_id_field',
    'renderer_backend',
    'platform_backend',
    'api_url',
    'platform_token_env',
)

_TIMEOUT_FIELDS = ('secrets_timeout', 'render_timeout', 'platform_timeout')


def parse_config_file(config_path: Path) -> dict:
    """Parse a TOML config file with fail-fast error context."""
    try:
        with open(config_path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e


def _overrides_from_toml(data: dict, source: Path) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for section, values in data.items():
        if not isinstance(values, dict):
            raise ConfigError(f"Top-level key '{section}' in {source} must be a table")
        for key, value in values.items():
            attr = _TOML_KEYS.get((section, key))
            if attr is None:
                raise ConfigError(f"Unknown setting [{section}] {key} in {source}")
            overrides[attr] = value
    return overrides


def validate_config(config: PipelineConfig) -> PipelineConfig:
    for name in _PATH_FIELDS:
        if not isinstance(getattr(config, name), Path):
            raise ConfigError(f"Setting '{name}' must be a path, got {getattr(config, name)!r}")
    for name in _STRING_FIELDS:
        if not isinstance(getattr(config, name), str):
            raise ConfigError(f"Setting '{name}' must be a string, got {getattr(config, name)!r}")
    for name in _TIMEOUT_FIELDS:
        value = getattr(config, name)
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(f"Setting '{name}' must be a positive number of seconds, got {value!r}")

    checks = (
        ('secrets backend', config.secrets_backend, SECRETS_BACKENDS),
        ('renderer backend', config.renderer_backend, RENDERER_BACKENDS),
        ('platform backend', config.platform_backend, PLATFORM_BACKENDS),
    )
    for label, value, allowed in checks:
        if value not in allowed:
            raise ConfigError(
                f"Unsupported {label} '{value}' (expected one of: {', '.join(allowed)})"
            )
    if not config.app_id_path or not config.app_id_field:
        raise ConfigError("Application id secret path and field must both be set")
    return config


def load_config(
    working_dir: Optional[Path] = None,
    config_file: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PipelineConfig:
    """
    Build the pipeline configuration.

    A missing default config file is fine; a missing explicitly named one is
    a ConfigError. ``overrides`` entries set to None are ignored.
    """
    working_dir = (working_dir or Path.cwd()).resolve()
    config = PipelineConfig(working_dir=working_dir)

    if config_file is not None:
        config_path = _resolve(working_dir, Path(config_file))
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
    else:
        config_path = working_dir / CONFIG_FILE

    values: dict[str, Any] = {}
    if config_path.exists():
        logger.debug(f"Loading config: {config_path}")
        values.update(_overrides_from_toml(parse_config_file(config_path), config_path))

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    for key in _PATH_FIELDS:
        if key not in values:
            continue
        if not isinstance(values[key], (str, os.PathLike)):
            raise ConfigError(f"Setting '{key}' must be a path, got {values[key]!r}")
        values[key] = Path(values[key])

    try:
        config = replace(config, **values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    return validate_config(config)
