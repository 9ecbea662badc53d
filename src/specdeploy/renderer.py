#!/usr/bin/env python3
"""
Secret-backed template rendering (render-once, never watch).

Renderers write the output atomically: either the whole rendered document
lands at the output path or nothing does.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Mapping, Optional, Protocol

from .config_constants import CONSUL_TEMPLATE_EXECUTABLE, RENDERED_SPEC_MODE, RENDER_TIMEOUT
from .errors import RenderError, SecretLookupError
from .secret_store import SecretStore


logger = logging.getLogger(__name__)


class TemplateRenderer(Protocol):
    def render_once(self, template_path: Path, output_path: Path) -> None:
        ...


def _temp_path_for(output_path: Path) -> Path:
    fd, name = tempfile.mkstemp(dir=output_path.parent, prefix=f".{output_path.name}.", suffix='.tmp')
    os.close(fd)
    return Path(name)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def write_atomic(output_path: Path, content: str) -> None:
    """Write content to a temp file next to output_path, then rename over it."""
    try:
        tmp_path = _temp_path_for(output_path)
    except OSError as e:
        raise RenderError(f"Output directory is not writable: {output_path.parent} ({e})") from e

    try:
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(content)
        os.chmod(tmp_path, RENDERED_SPEC_MODE)
        os.replace(tmp_path, output_path)
    except OSError as e:
        _discard(tmp_path)
        raise RenderError(f"Failed to write rendered spec {output_path}: {e}") from e


class ConsulTemplateRenderer:
    """Runs ``consul-template -template <in>:<out> -once``."""

    def __init__(self, executable: str = CONSUL_TEMPLATE_EXECUTABLE, timeout: float = RENDER_TIMEOUT,
                 env: Optional[dict] = None) -> None:
        self.executable = executable
        self.timeout = timeout
        self.env = env

    def render_once(self, template_path: Path, output_path: Path) -> None:
        try:
            tmp_path = _temp_path_for(output_path)
        except OSError as e:
            raise RenderError(f"Output directory is not writable: {output_path.parent} ({e})") from e

        cmd = [self.executable, '-template', f'{template_path}:{tmp_path}', '-once']
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                    env=self.env,
                )
            except FileNotFoundError as e:
                raise RenderError(f"`{self.executable}` is not installed") from e
            except subprocess.TimeoutExpired as e:
                raise RenderError(
                    f"{self.executable} did not finish within {self.timeout}s "
                    "(is vault reachable and are you logged in?)"
                ) from e

            if result.returncode != 0:
                detail = (result.stderr or result.stdout or '').strip()
                raise RenderError(
                    f"{self.executable} failed with exit code {result.returncode}: {detail}"
                )

            if not tmp_path.exists() or tmp_path.stat().st_size == 0:
                raise RenderError(f"{self.executable} produced no output for {template_path}")

            os.chmod(tmp_path, RENDERED_SPEC_MODE)
            os.replace(tmp_path, output_path)
        except OSError as e:
            raise RenderError(f"Failed to write rendered spec {output_path}: {e}") from e
        finally:
            _discard(tmp_path)


class TemplateVariables:
    """
    Read-only view of environment variables for templates.

    Exposes no mapping methods, so ``env.items`` or ``env.get`` resolve to
    the variables of that name instead of dict methods. Names starting with
    an underscore are only reachable as ``env["_NAME"]``.
    """

    __slots__ = ('_values',)

    def __init__(self, values: Mapping[str, str]) -> None:
        object.__setattr__(self, '_values', dict(values))

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __getattr__(self, name: str) -> str:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._values


class Jinja2Renderer:
    """
    In-process renderer.

    Templates see ``env`` (environment variables) and ``secret(path, field)``
    which reads from the secret store on every call. Undefined names fail
    the render. ``${...}`` platform bindings are not Jinja2 syntax and are
    passed through.
    """

    def __init__(self, secret_store: SecretStore, variables: Optional[Mapping[str, str]] = None) -> None:
        self.secret_store = secret_store
        self.variables = dict(variables if variables is not None else os.environ)

    def render_text(self, template_text: str, source: str = '<template>') -> str:
        from jinja2 import Environment, StrictUndefined, TemplateError

        environment = Environment(undefined=StrictUndefined, keep_trailing_newline=True)
        environment.globals['env'] = TemplateVariables(self.variables)
        environment.globals['secret'] = self.secret_store.get

        try:
            template = environment.from_string(template_text)
            return template.render()
        except SecretLookupError as e:
            raise RenderError(f"Secret lookup failed while rendering {source}: {e}") from e
        except TemplateError as e:
            raise RenderError(f"Failed to render template {source}: {e}") from e

    def render_once(self, template_path: Path, output_path: Path) -> None:
        logger.debug(f"Rendering Jinja2 template: {template_path}")
        try:
            template_text = Path(template_path).read_text(encoding='utf-8')
        except OSError as e:
            raise RenderError(f"Cannot read template {template_path}: {e}") from e

        logger.debug(f"  Template size: {len(template_text)} bytes")
        rendered = self.render_text(template_text, str(template_path))
        logger.debug(f"  Rendered output size: {len(rendered)} bytes")
        write_atomic(Path(output_path), rendered)


def render_specification(renderer: TemplateRenderer, template_path: Path, output_path: Path) -> Path:
    """
    Render the template once into output_path.

    A rendered file left over from an earlier failed run is removed first,
    so a failed render never leaves a stale spec behind.
    """
    if output_path.exists():
        logger.warning(f"Removing rendered spec left over from a previous run: {output_path}")
        try:
            output_path.unlink()
        except OSError as e:
            raise RenderError(f"Cannot remove stale rendered spec {output_path}: {e}") from e

    if not template_path.is_file():
        raise RenderError(f"Template not found: {template_path}")

    try:
        renderer.render_once(template_path, output_path)
    except RenderError:
        raise
    except SecretLookupError as e:
        raise RenderError(f"Secret lookup failed while rendering {template_path}: {e}") from e

    if not output_path.is_file():
        raise RenderError(f"Renderer reported success but {output_path} was not written")

    try:
        os.chmod(output_path, RENDERED_SPEC_MODE)
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {output_path}: {e}")

    logger.debug(f"Rendered spec written: {output_path}")
    return output_path
