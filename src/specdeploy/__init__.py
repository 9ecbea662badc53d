"""specdeploy package."""

from __future__ import annotations

import os
from datetime import datetime, timezone


def _build_date_version() -> str:
    override = os.getenv("SPECDEPLOY_BUILD_VERSION")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%d")


__version__ = _build_date_version()

from .cli import main, parse_arguments  # noqa: E402
from .config import PipelineConfig, RuntimeEnvironment, load_config  # noqa: E402
from .pipeline import PipelineResult, PipelineState, run_pipeline  # noqa: E402

__all__ = [
    "PipelineConfig",
    "PipelineResult",
    "PipelineState",
    "RuntimeEnvironment",
    "load_config",
    "main",
    "parse_arguments",
    "run_pipeline",
]
