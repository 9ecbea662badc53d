#!/usr/bin/env python3
"""
DigitalOcean App Platform clients.

``update_application(app_id, spec_path)`` replaces the app spec by id. The
platform treats identical specs as a no-op, so a failed run can be retried
by the operator. Nothing here retries on its own.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Any, Optional, Protocol

import requests
import yaml

from .config_constants import DIGITALOCEAN_API_URL, DOCTL_EXECUTABLE, PLATFORM_TIMEOUT
from .errors import ApplyError, ApplyRejectReason


logger = logging.getLogger(__name__)


class PlatformClient(Protocol):
    def update_application(self, app_id: str, spec_path: Path) -> None:
        ...


def reason_for_status(status_code: int) -> ApplyRejectReason:
    if status_code in (400, 422):
        return ApplyRejectReason.MALFORMED_SPEC
    if status_code == 404:
        return ApplyRejectReason.UNKNOWN_APP_ID
    if status_code in (401, 403):
        return ApplyRejectReason.UNAUTHORIZED
    return ApplyRejectReason.UNKNOWN


# doctl errors look like: "Error: PUT https://api.../v2/apps/<id>: 404 (request "...") ..."
_STATUS_PATTERN = re.compile(r':\s(\d{3})\s')

_NETWORK_MARKERS = (
    'dial tcp',
    'no such host',
    'connection refused',
    'i/o timeout',
    'tls handshake timeout',
)

_SPEC_MARKERS = (
    'error parsing',
    'error unmarshaling',
    'invalid app spec',
    'yaml:',
)


def classify_doctl_error(output: str) -> ApplyRejectReason:
    """Map doctl error output onto a reject reason."""
    lowered = (output or '').lower()

    match = _STATUS_PATTERN.search(output or '')
    if match:
        reason = reason_for_status(int(match.group(1)))
        if reason is not ApplyRejectReason.UNKNOWN:
            return reason

    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return ApplyRejectReason.NETWORK
    if 'unable to initialize digitalocean api client' in lowered or 'access token is required' in lowered:
        return ApplyRejectReason.UNAUTHORIZED
    if any(marker in lowered for marker in _SPEC_MARKERS):
        return ApplyRejectReason.MALFORMED_SPEC
    return ApplyRejectReason.UNKNOWN


class DoctlPlatformClient:
    """Runs ``doctl apps update <app_id> --spec=<path>``."""

    def __init__(self, executable: str = DOCTL_EXECUTABLE, timeout: float = PLATFORM_TIMEOUT,
                 env: Optional[dict] = None) -> None:
        self.executable = executable
        self.timeout = timeout
        self.env = env

    def update_application(self, app_id: str, spec_path: Path) -> None:
        cmd = [self.executable, 'apps', 'update', app_id, f'--spec={spec_path}']
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self.env,
            )
        except FileNotFoundError as e:
            raise ApplyError(f"`{self.executable}` is not installed", ApplyRejectReason.UNKNOWN) from e
        except OSError as e:
            raise ApplyError(f"Cannot run `{self.executable}`: {e}", ApplyRejectReason.UNKNOWN) from e
        except subprocess.TimeoutExpired as e:
            raise ApplyError(
                f"{self.executable} did not answer within {self.timeout}s", ApplyRejectReason.NETWORK
            ) from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or '').strip()
            reason = classify_doctl_error(detail)
            raise ApplyError(
                f"App update rejected ({reason.value}): {detail or 'no error output'}",
                reason,
                detail,
            )

        logger.debug(f"doctl output: {result.stdout.strip()}")


def load_spec_document(spec_path: Path) -> dict:
    """Parse a rendered app spec (YAML) into a dict."""
    try:
        text = Path(spec_path).read_text(encoding='utf-8')
    except OSError as e:
        raise ApplyError(f"Cannot read rendered spec {spec_path}: {e}", ApplyRejectReason.MISSING_SPEC) from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ApplyError(f"Rendered spec is not valid YAML: {e}", ApplyRejectReason.MALFORMED_SPEC) from e

    if not isinstance(document, dict):
        raise ApplyError("Rendered spec must be a YAML mapping", ApplyRejectReason.MALFORMED_SPEC)
    return document


class DigitalOceanApiClient:
    """Updates the app through ``PUT /v2/apps/{id}`` on the public API."""

    def __init__(self, token: str, api_url: str = DIGITALOCEAN_API_URL, timeout: float = PLATFORM_TIMEOUT,
                 session: Optional[requests.Session] = None) -> None:
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    def update_application(self, app_id: str, spec_path: Path) -> None:
        spec = load_spec_document(spec_path)
        url = f"{self.api_url}/v2/apps/{app_id}"
        logger.debug(f"PUT {url}")

        try:
            response = self.session.put(url, json={"spec": spec}, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ApplyError(f"DigitalOcean API unreachable: {e}", ApplyRejectReason.NETWORK) from e
        except requests.RequestException as e:
            raise ApplyError(f"DigitalOcean API request failed: {e}", ApplyRejectReason.UNKNOWN) from e

        if response.ok:
            return

        detail = _error_message(response)
        reason = reason_for_status(response.status_code)
        raise ApplyError(
            f"App update rejected ({reason.value}, HTTP {response.status_code}): {detail}",
            reason,
            detail,
        )


def _error_message(response: Any) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or '').strip() or 'no error body'
    if isinstance(body, dict):
        return str(body.get('message') or body.get('id') or body)
    return str(body)
