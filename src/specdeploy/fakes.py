#!/usr/bin/env python3
"""
In-memory stand-ins for the secret store, renderer and platform.

Used by the test-suite to drive the pipeline without Vault, consul-template
or DigitalOcean.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional

from .errors import (
    ApplyError,
    ApplyRejectReason,
    SecretLookupError,
    SecretNotFoundError,
)
from .renderer import write_atomic


class InMemorySecretStore:
    def __init__(self, data: Optional[Dict[str, Dict[str, str]]] = None,
                 errors: Optional[Dict[str, SecretLookupError]] = None) -> None:
        self.data = {path: dict(fields) for path, fields in (data or {}).items()}
        self.errors = dict(errors or {})
        self.calls: list[tuple[str, str]] = []

    def get(self, path: str, field: str) -> str:
        self.calls.append((path, field))
        if path in self.errors:
            raise self.errors[path]
        fields = self.data.get(path)
        if fields is None or field not in fields:
            raise SecretNotFoundError(f"Secret not found: {path} (field {field})", path, field)
        return fields[field]


class StaticRenderer:
    """Writes fixed content, or raises the configured error."""

    def __init__(self, content: str = '', error: Optional[Exception] = None) -> None:
        self.content = content
        self.error = error
        self.calls: list[tuple[Path, Path]] = []

    def render_once(self, template_path: Path, output_path: Path) -> None:
        self.calls.append((template_path, output_path))
        if self.error is not None:
            raise self.error
        write_atomic(Path(output_path), self.content)


class InMemoryPlatform:
    """
    Holds one desired spec per known app.

    ``deployments`` only advances when the submitted spec differs from the
    current one, mirroring the platform's no-op on identical updates.
    """

    def __init__(self, app_ids: Iterable[str] = (), reject: Optional[ApplyRejectReason] = None) -> None:
        self.specs: Dict[str, str] = {app_id: '' for app_id in app_ids}
        self.deployments: Dict[str, int] = {app_id: 0 for app_id in self.specs}
        self.reject = reject
        self.calls: list[tuple[str, Path]] = []

    def update_application(self, app_id: str, spec_path: Path) -> None:
        self.calls.append((app_id, spec_path))
        if self.reject is not None:
            raise ApplyError(f"App update rejected ({self.reject.value})", self.reject)
        if app_id not in self.specs:
            raise ApplyError(
                f"App update rejected ({ApplyRejectReason.UNKNOWN_APP_ID.value}): {app_id}",
                ApplyRejectReason.UNKNOWN_APP_ID,
            )
        try:
            content = Path(spec_path).read_text(encoding='utf-8')
        except OSError as e:
            raise ApplyError(f"Cannot read {spec_path}: {e}", ApplyRejectReason.MISSING_SPEC) from e

        if content != self.specs[app_id]:
            self.specs[app_id] = content
            self.deployments[app_id] += 1


__all__ = ["InMemoryPlatform", "InMemorySecretStore", "StaticRenderer"]
