#!/usr/bin/env python3
"""
Precondition checks run before any secret lookup or file write.
"""

from __future__ import annotations

import logging

from .config import PipelineConfig, RuntimeEnvironment
from .errors import PreconditionError


logger = logging.getLogger(__name__)


def check_required_variable(environment: RuntimeEnvironment, name: str) -> None:
    if not environment.get(name).strip():
        raise PreconditionError(f"{name} must be set!")
    logger.debug(f"  {name} is set")


def check_required_executable(environment: RuntimeEnvironment, name: str) -> None:
    location = environment.which(name)
    if not location:
        raise PreconditionError(f"`{name}` is not installed (not found on PATH).")
    logger.debug(f"  {name}: {location}")


def check_preconditions(config: PipelineConfig, environment: RuntimeEnvironment) -> None:
    """
    Verify required variables, then required executables.

    Each check is independently fatal; the first failure raises
    PreconditionError naming what is missing.
    """
    logger.debug("Checking preconditions...")

    for name in config.required_variables():
        check_required_variable(environment, name)

    for name in config.required_executables():
        check_required_executable(environment, name)

    logger.debug("Preconditions satisfied")
