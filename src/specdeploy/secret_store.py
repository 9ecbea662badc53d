#!/usr/bin/env python3
"""
Secret store adapters (Vault KV).

Both adapters expose ``get(path, field) -> str`` and raise one of
SecretNotFoundError, SecretAuthError or SecretStoreUnreachableError.
"""

from __future__ import annotations

import json
import logging
import socket
import subprocess
import urllib.error
import urllib.request
from typing import Optional, Protocol

from .config_constants import SECRET_LOOKUP_TIMEOUT, VAULT_EXECUTABLE
from .errors import (
    SecretAuthError,
    SecretLookupError,
    SecretNotFoundError,
    SecretStoreUnreachableError,
)


logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def get(self, path: str, field: str) -> str:
        ...


_NOT_FOUND_MARKERS = (
    'no value found at',
    'no secret found',
    'not present in secret',
)

_AUTH_MARKERS = (
    'permission denied',
    'missing client token',
    'token expired',
    'invalid token',
    'code: 401',
    'code: 403',
)

_UNREACHABLE_MARKERS = (
    'connection refused',
    'dial tcp',
    'no such host',
    'i/o timeout',
    'connection reset',
    'tls handshake timeout',
)


def classify_vault_error(stderr: str, path: str, field: str) -> SecretLookupError:
    """Map vault CLI error output onto the lookup error taxonomy."""
    text = (stderr or '').strip()
    lowered = text.lower()
    location = f"{path} (field {field})"

    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return SecretNotFoundError(f"Secret not found: {location}", path, field)
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return SecretAuthError(
            f"Vault rejected the lookup of {location}; log in to vault again ({text})",
            path, field,
        )
    if any(marker in lowered for marker in _UNREACHABLE_MARKERS):
        return SecretStoreUnreachableError(f"Vault is unreachable while reading {location}: {text}", path, field)
    return SecretLookupError(f"Vault lookup failed for {location}: {text or 'no error output'}", path, field)


class VaultCliSecretStore:
    """Reads single fields with ``vault kv get -field=<field> <path>``."""

    def __init__(self, executable: str = VAULT_EXECUTABLE, timeout: float = SECRET_LOOKUP_TIMEOUT,
                 env: Optional[dict] = None) -> None:
        self.executable = executable
        self.timeout = timeout
        self.env = env

    def get(self, path: str, field: str) -> str:
        cmd = [self.executable, 'kv', 'get', f'-field={field}', path]
        logger.debug(f"Vault lookup: {path} field={field}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self.env,
            )
        except FileNotFoundError as e:
            raise SecretStoreUnreachableError(f"`{self.executable}` is not installed", path, field) from e
        except OSError as e:
            raise SecretStoreUnreachableError(f"Cannot run `{self.executable}`: {e}", path, field) from e
        except subprocess.TimeoutExpired as e:
            raise SecretStoreUnreachableError(
                f"Vault lookup of {path} timed out after {self.timeout}s", path, field
            ) from e

        if result.returncode != 0:
            raise classify_vault_error(result.stderr, path, field)

        # vault prints the raw value without a trailing newline when stdout is not a TTY
        value = result.stdout.rstrip('\n')
        if not value:
            raise SecretNotFoundError(f"Secret field is empty: {path} (field {field})", path, field)
        return value


def split_kv_path(path: str) -> tuple[str, str]:
    """Split ``kv/newsletter`` into mount ``kv`` and secret path ``newsletter``."""
    mount, _, rest = path.strip('/').partition('/')
    if not mount or not rest:
        raise SecretNotFoundError(f"Secret path must be <mount>/<path>: {path!r}", path)
    return mount, rest


class VaultHttpSecretStore:
    """Reads KV v2 secrets over the Vault HTTP API."""

    def __init__(self, address: str, token: str, timeout: float = SECRET_LOOKUP_TIMEOUT) -> None:
        self.address = address.rstrip('/')
        self.token = token
        self.timeout = timeout

    def _request_json(self, url: str) -> dict:
        req = urllib.request.Request(url, method='GET')
        req.add_header('X-Vault-Token', self.token)
        req.add_header('Accept', 'application/json')

        with urllib.request.urlopen(req, timeout=self.timeout) as response:
            body = response.read().decode('utf-8')
            if not body:
                return {}
            return json.loads(body)

    def read(self, path: str) -> dict:
        """Return the data dict stored at ``path``."""
        mount, rest = split_kv_path(path)
        url = f"{self.address}/v1/{mount}/data/{rest}"
        try:
            payload = self._request_json(url)
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise SecretNotFoundError(f"Secret not found: {path}", path) from e
            if e.code in (401, 403):
                raise SecretAuthError(
                    f"Vault rejected the token while reading {path} (HTTP {e.code}); log in to vault again",
                    path,
                ) from e
            raise SecretLookupError(f"Vault returned HTTP {e.code} for {path}", path) from e
        except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as e:
            raise SecretStoreUnreachableError(f"Vault at {self.address} is unreachable: {e}", path) from e
        except json.JSONDecodeError as e:
            raise SecretLookupError(f"Vault returned invalid JSON for {path}", path) from e

        data = (payload.get('data') or {}).get('data')
        if not isinstance(data, dict):
            raise SecretNotFoundError(f"Secret not found: {path}", path)
        return data

    def get(self, path: str, field: str) -> str:
        logger.debug(f"Vault lookup: {path} field={field}")
        data = self.read(path)
        if field not in data or data[field] is None:
            raise SecretNotFoundError(f"Secret not found: {path} (field {field})", path, field)
        return str(data[field])
