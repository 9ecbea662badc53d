#!/usr/bin/env python3
"""
Render -> apply -> cleanup pipeline.

Stages run strictly in order and the first error ends the run:

    START -> CHECKED -> RENDERED -> APPLIED -> CLEANED
    START -> PRECONDITION_FAILED
    START -> CHECKED -> RENDER_FAILED
    START -> CHECKED -> RENDERED -> APPLY_FAILED   (rendered spec kept on disk)

Errors raised by the stages are returned inside a PipelineResult, not
re-raised. There are no retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .config import PipelineConfig, RuntimeEnvironment
from .config_constants import (
    EXIT_APPLY_FAILED,
    EXIT_OK,
    EXIT_PRECONDITION_FAILED,
    EXIT_RENDER_FAILED,
    EXIT_UNEXPECTED,
)
from .errors import (
    ApplyError,
    ApplyRejectReason,
    CleanupWarning,
    DeployError,
    PreconditionError,
    RenderError,
    SecretLookupError,
    SecretNotFoundError,
)
from .platform_client import PlatformClient
from .preflight import check_preconditions
from .renderer import TemplateRenderer, render_specification
from .secret_store import SecretStore


logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    START = 'START'
    CHECKED = 'CHECKED'
    RENDERED = 'RENDERED'
    APPLIED = 'APPLIED'
    CLEANED = 'CLEANED'
    PRECONDITION_FAILED = 'PRECONDITION_FAILED'
    RENDER_FAILED = 'RENDER_FAILED'
    APPLY_FAILED = 'APPLY_FAILED'


_EXIT_CODES = {
    PipelineState.CLEANED: EXIT_OK,
    PipelineState.PRECONDITION_FAILED: EXIT_PRECONDITION_FAILED,
    PipelineState.RENDER_FAILED: EXIT_RENDER_FAILED,
    PipelineState.APPLY_FAILED: EXIT_APPLY_FAILED,
}

_FAILED_STAGES = {
    PipelineState.PRECONDITION_FAILED: 'precondition',
    PipelineState.RENDER_FAILED: 'render',
    PipelineState.APPLY_FAILED: 'apply',
}


@dataclass
class PipelineResult:
    state: PipelineState
    spec_path: Path
    error: Optional[DeployError] = None
    warnings: list[CleanupWarning] = field(default_factory=list)
    app_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.CLEANED

    @property
    def stage(self) -> Optional[str]:
        """Name of the stage that failed, or None on success."""
        return _FAILED_STAGES.get(self.state)

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.state, EXIT_UNEXPECTED)

    @property
    def message(self) -> str:
        if self.error is None:
            return ''
        return f"[{self.stage}] {self.error}"


def resolve_application_id(secret_store: SecretStore, path: str, field_name: str) -> str:
    app_id = secret_store.get(path, field_name).strip()
    if not app_id:
        raise SecretNotFoundError(f"Application id is empty at {path} (field {field_name})", path, field_name)
    return app_id


def apply_specification(
    secret_store: SecretStore,
    platform: PlatformClient,
    spec_path: Path,
    app_id_path: str,
    app_id_field: str,
) -> str:
    """
    Look up the application id and submit the rendered spec.

    Returns the application id. Failures propagate unchanged; the rendered
    spec is left on disk for inspection.
    """
    if not spec_path.is_file():
        raise ApplyError(f"Rendered spec not found: {spec_path}", ApplyRejectReason.MISSING_SPEC)

    app_id = resolve_application_id(secret_store, app_id_path, app_id_field)
    logger.debug(f"Application id resolved from {app_id_path}")

    platform.update_application(app_id, spec_path)
    return app_id


def cleanup_specification(spec_path: Path) -> Optional[CleanupWarning]:
    """Delete the rendered spec. Failure is returned as a warning, never raised."""
    try:
        spec_path.unlink()
    except FileNotFoundError:
        return CleanupWarning(f"Rendered spec was already removed: {spec_path}")
    except OSError as e:
        return CleanupWarning(f"Could not remove rendered spec {spec_path}: {e}; delete it manually")
    logger.debug(f"Removed rendered spec: {spec_path}")
    return None


def _transition(current: PipelineState, new: PipelineState) -> PipelineState:
    logger.debug(f"Pipeline state: {current.value} -> {new.value}")
    return new


def run_pipeline(
    config: PipelineConfig,
    environment: RuntimeEnvironment,
    secret_store: SecretStore,
    renderer: TemplateRenderer,
    platform: PlatformClient,
) -> PipelineResult:
    """
    Run preconditions, render, apply and cleanup once.
    """
    spec_path = config.output_path
    state = PipelineState.START

    try:
        check_preconditions(config, environment)
    except PreconditionError as e:
        logger.error(f"Precondition failed: {e}")
        state = _transition(state, PipelineState.PRECONDITION_FAILED)
        return PipelineResult(state, spec_path, error=e)
    state = _transition(state, PipelineState.CHECKED)

    logger.info("Retrieving secrets from Vault and applying to template")
    logger.info("Ensure you are logged into vault")
    try:
        render_specification(renderer, config.template_path, spec_path)
    except RenderError as e:
        logger.error(f"Render failed: {e}")
        state = _transition(state, PipelineState.RENDER_FAILED)
        return PipelineResult(state, spec_path, error=e)
    state = _transition(state, PipelineState.RENDERED)

    logger.info("Rendered spec. Updating the application with the new spec...")
    try:
        app_id = apply_specification(
            secret_store,
            platform,
            spec_path,
            config.app_id_path,
            config.app_id_field,
        )
    except (ApplyError, SecretLookupError) as e:
        logger.error(f"Apply failed: {e}")
        logger.error(f"Rendered spec kept for debugging: {spec_path}")
        state = _transition(state, PipelineState.APPLY_FAILED)
        return PipelineResult(state, spec_path, error=e)
    state = _transition(state, PipelineState.APPLIED)

    logger.info("Update accepted. Removing the rendered spec")
    result = PipelineResult(state, spec_path, app_id=app_id)
    warning = cleanup_specification(spec_path)
    if warning is not None:
        logger.warning(str(warning))
        result.warnings.append(warning)
    result.state = _transition(state, PipelineState.CLEANED)
    return result
