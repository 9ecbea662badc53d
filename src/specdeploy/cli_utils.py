#!/usr/bin/env python3
"""Shared CLI helpers."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as package_version


def get_cli_version() -> str:
    try:
        return package_version("specdeploy")
    except PackageNotFoundError:
        from . import __version__

        return __version__
