#!/usr/bin/env python3
"""
specdeploy CLI entry point.

Renders the app spec template with secrets from Vault, pushes it to
DigitalOcean App Platform and removes the rendered file again.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .cli_utils import get_cli_version
from .config import PipelineConfig, RuntimeEnvironment, load_config
from .config_constants import (
    CONFIG_FILE,
    EXIT_PRECONDITION_FAILED,
    EXIT_UNEXPECTED,
    PLATFORM_API,
    PLATFORM_BACKENDS,
    RENDERER_BACKENDS,
    RENDERER_JINJA2,
    SECRETS_BACKENDS,
    SECRETS_BACKEND_VAULT_HTTP,
)
from .errors import ConfigError
from .pipeline import PipelineResult, run_pipeline
from .platform_client import DigitalOceanApiClient, DoctlPlatformClient, PlatformClient
from .renderer import ConsulTemplateRenderer, Jinja2Renderer, TemplateRenderer
from .secret_store import SecretStore, VaultCliSecretStore, VaultHttpSecretStore


logger = logging.getLogger(__name__)


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR
    }

    level = level_map.get(str(log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True
    )

    logger.debug(f"Logging configured: {str(log_level).upper()}")


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for specdeploy.

    Supports arguments:
    1. -d, --dir <path> - Working directory (default: current directory)
    2. -c, --config <file> - Config file (default: specdeploy.toml if present)
    3. -t, --template <path> - Template to render
    4. -o, --output <path> - Rendered spec path
    5. --app-id-path / --app-id-field - Vault location of the application id
    6. --secrets-backend / --renderer / --platform - Adapter selection
    7. --log-level <level> - DEBUG, INFO, WARNING or ERROR
    """
    parser = argparse.ArgumentParser(
        prog='specdeploy',
        description='Render an App Platform spec with Vault secrets and apply it',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Render spec.yaml.tmpl, update the app, remove spec.yaml
  %(prog)s

  # Run against another directory with verbose tracing
  %(prog)s -d deploy/ --log-level DEBUG

  # Render in-process with Jinja2 and use the HTTP APIs directly
  %(prog)s --renderer jinja2 --secrets-backend vault-http --platform api
        '''
    )

    parser.add_argument(
        '-d', '--dir',
        type=Path,
        default=Path.cwd(),
        metavar='PATH',
        help='Working directory containing the template (default: current directory)'
    )

    parser.add_argument(
        '-c', '--config',
        type=Path,
        default=None,
        metavar='FILE',
        help=f'Pipeline config file (default: {CONFIG_FILE} if present)'
    )

    parser.add_argument(
        '-t', '--template',
        type=Path,
        default=None,
        metavar='PATH',
        help='Template to render (default: spec.yaml.tmpl)'
    )

    parser.add_argument(
        '-o', '--output',
        type=Path,
        default=None,
        metavar='PATH',
        help='Rendered spec path, removed after a successful update (default: spec.yaml)'
    )

    parser.add_argument(
        '--app-id-path',
        default=None,
        metavar='PATH',
        help='Vault KV path holding the application id (default: kv/newsletter)'
    )

    parser.add_argument(
        '--app-id-field',
        default=None,
        metavar='FIELD',
        help='Field holding the application id (default: app_id)'
    )

    parser.add_argument(
        '--secrets-backend',
        choices=SECRETS_BACKENDS,
        default=None,
        help='How to read Vault (default: vault-cli)'
    )

    parser.add_argument(
        '--renderer',
        choices=RENDERER_BACKENDS,
        default=None,
        help='Template renderer (default: consul-template)'
    )

    parser.add_argument(
        '--platform',
        choices=PLATFORM_BACKENDS,
        default=None,
        help='How to reach App Platform (default: doctl)'
    )

    parser.add_argument(
        '--log-level',
        default=None,
        metavar='LEVEL',
        help='Log level (default: INFO)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {get_cli_version()}'
    )

    return parser.parse_args(argv)


def build_secret_store(config: PipelineConfig, environment: RuntimeEnvironment) -> SecretStore:
    if config.secrets_backend == SECRETS_BACKEND_VAULT_HTTP:
        return VaultHttpSecretStore(
            address=environment.get(config.address_env),
            token=environment.get(config.token_env),
            timeout=config.secrets_timeout,
        )
    return VaultCliSecretStore(timeout=config.secrets_timeout)


def build_renderer(config: PipelineConfig, environment: RuntimeEnvironment,
                   secret_store: SecretStore) -> TemplateRenderer:
    if config.renderer_backend == RENDERER_JINJA2:
        return Jinja2Renderer(secret_store, variables=environment.variables)
    return ConsulTemplateRenderer(timeout=config.render_timeout)


def build_platform(config: PipelineConfig, environment: RuntimeEnvironment) -> PlatformClient:
    if config.platform_backend == PLATFORM_API:
        return DigitalOceanApiClient(
            token=environment.get(config.platform_token_env),
            api_url=config.api_url,
            timeout=config.platform_timeout,
        )
    return DoctlPlatformClient(timeout=config.platform_timeout)


def report(result: PipelineResult) -> None:
    if result.ok:
        for warning in result.warnings:
            print(f"[WARN] {warning}", flush=True)
        print("[SUCCESS] Application spec updated and rendered spec removed", flush=True)
        return

    print(f"[ERROR] {result.message}", file=sys.stderr, flush=True)
    if result.stage == 'apply':
        print(f"[ERROR] Rendered spec left on disk for debugging: {result.spec_path}", file=sys.stderr, flush=True)


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    configure_logging(args.log_level or "INFO")

    try:
        config = load_config(
            working_dir=args.dir,
            config_file=args.config,
            overrides={
                'template': args.template,
                'output': args.output,
                'app_id_path': args.app_id_path,
                'app_id_field': args.app_id_field,
                'secrets_backend': args.secrets_backend,
                'renderer_backend': args.renderer,
                'platform_backend': args.platform,
                'log_level': args.log_level,
            },
        )
    except ConfigError as e:
        print(f"[ERROR] [{e.stage}] {e}", file=sys.stderr, flush=True)
        return EXIT_PRECONDITION_FAILED

    if args.log_level is None:
        configure_logging(config.log_level)

    logger.debug(f"Working directory: {config.working_dir}")
    logger.debug(f"Template: {config.template_path}")
    logger.debug(f"Rendered spec: {config.output_path}")

    environment = RuntimeEnvironment.from_process()

    try:
        secret_store = build_secret_store(config, environment)
        renderer = build_renderer(config, environment, secret_store)
        platform = build_platform(config, environment)
        result = run_pipeline(config, environment, secret_store, renderer, platform)
    except Exception as e:
        logger.error(f"Unexpected failure: {e}", exc_info=True)
        print(f"[ERROR] Execution failed: {e}", file=sys.stderr, flush=True)
        return EXIT_UNEXPECTED

    report(result)
    return result.exit_code


if __name__ == '__main__':
    raise SystemExit(main())
