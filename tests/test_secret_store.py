"""
Vault secret store adapter tests.
"""

import json
import subprocess
import urllib.error
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from specdeploy.errors import (  # noqa: E402
    SecretAuthError,
    SecretLookupError,
    SecretNotFoundError,
    SecretStoreUnreachableError,
)
from specdeploy.secret_store import (  # noqa: E402
    VaultCliSecretStore,
    VaultHttpSecretStore,
    classify_vault_error,
    split_kv_path,
)


class TestVaultCliLookup:
    def test_runs_vault_kv_get_with_field(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="app-123", stderr="")

            value = VaultCliSecretStore().get("kv/newsletter", "app_id")

        assert value == "app-123"
        cmd = mock_run.call_args[0][0]
        assert cmd == ["vault", "kv", "get", "-field=app_id", "kv/newsletter"]

    def test_strips_trailing_newline_only(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout=" tok-123\n", stderr="")

            assert VaultCliSecretStore().get("kv/newsletter", "authorization_token") == " tok-123"

    def test_empty_value_is_not_found(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="", stderr="")

            with pytest.raises(SecretNotFoundError):
                VaultCliSecretStore().get("kv/newsletter", "app_id")

    def test_missing_path(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=2, stdout="", stderr="No value found at kv/data/newsletter\n")

            with pytest.raises(SecretNotFoundError) as excinfo:
                VaultCliSecretStore().get("kv/newsletter", "app_id")

        assert excinfo.value.path == "kv/newsletter"
        assert excinfo.value.field == "app_id"
        assert excinfo.value.kind == "not-found"

    def test_missing_field(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=1, stdout="", stderr='Field "app_id" not present in secret\n')

            with pytest.raises(SecretNotFoundError):
                VaultCliSecretStore().get("kv/newsletter", "app_id")

    def test_expired_token(self):
        stderr = (
            "Error making API request.\n\n"
            "URL: GET https://vault.example.com/v1/sys/internal/ui/mounts/kv/newsletter\n"
            "Code: 403. Errors:\n\n* permission denied\n"
        )
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=2, stdout="", stderr=stderr)

            with pytest.raises(SecretAuthError):
                VaultCliSecretStore().get("kv/newsletter", "app_id")

    def test_unreachable_server(self):
        stderr = 'Get "https://127.0.0.1:8200/v1/kv/data/newsletter": dial tcp 127.0.0.1:8200: connect: connection refused'
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=2, stdout="", stderr=stderr)

            with pytest.raises(SecretStoreUnreachableError):
                VaultCliSecretStore().get("kv/newsletter", "app_id")

    def test_timeout_is_unreachable(self):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("vault", 30)):
            with pytest.raises(SecretStoreUnreachableError, match="timed out"):
                VaultCliSecretStore().get("kv/newsletter", "app_id")

    def test_missing_binary(self):
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(SecretStoreUnreachableError, match="not installed"):
                VaultCliSecretStore().get("kv/newsletter", "app_id")

    def test_binary_that_cannot_be_executed(self):
        with patch("subprocess.run", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(SecretStoreUnreachableError, match="Cannot run `vault`"):
                VaultCliSecretStore().get("kv/newsletter", "app_id")


class TestClassifyVaultError:
    def test_unrecognised_output_is_generic(self):
        error = classify_vault_error("something odd happened", "kv/newsletter", "app_id")

        assert type(error) is SecretLookupError
        assert "something odd happened" in str(error)

    def test_all_kinds_share_base_class(self):
        for error_cls in (SecretNotFoundError, SecretAuthError, SecretStoreUnreachableError):
            assert issubclass(error_cls, SecretLookupError)


def _response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value.read.return_value = json.dumps(payload).encode("utf-8")
    return response


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://vault", code, "error", hdrs=None, fp=None)


class TestVaultHttpLookup:
    def test_reads_kv2_field(self):
        payload = {"data": {"data": {"app_id": "app-123", "authorization_token": "tok-123"}}}

        with patch("urllib.request.urlopen", return_value=_response(payload)) as mock_urlopen:
            store = VaultHttpSecretStore("https://vault.example.com:8200/", "s.token")
            value = store.get("kv/newsletter", "authorization_token")

        assert value == "tok-123"
        request = mock_urlopen.call_args[0][0]
        assert request.full_url == "https://vault.example.com:8200/v1/kv/data/newsletter"
        assert request.get_header("X-vault-token") == "s.token"

    def test_missing_field(self):
        payload = {"data": {"data": {"app_id": "app-123"}}}

        with patch("urllib.request.urlopen", return_value=_response(payload)):
            with pytest.raises(SecretNotFoundError):
                VaultHttpSecretStore("http://vault", "t").get("kv/newsletter", "authorization_token")

    def test_404_is_not_found(self):
        with patch("urllib.request.urlopen", side_effect=_http_error(404)):
            with pytest.raises(SecretNotFoundError):
                VaultHttpSecretStore("http://vault", "t").get("kv/newsletter", "app_id")

    @pytest.mark.parametrize("code", [401, 403])
    def test_auth_errors(self, code):
        with patch("urllib.request.urlopen", side_effect=_http_error(code)):
            with pytest.raises(SecretAuthError):
                VaultHttpSecretStore("http://vault", "t").get("kv/newsletter", "app_id")

    def test_connection_failure_is_unreachable(self):
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("connection refused")):
            with pytest.raises(SecretStoreUnreachableError):
                VaultHttpSecretStore("http://vault", "t").get("kv/newsletter", "app_id")

    def test_server_error_is_generic_lookup_error(self):
        with patch("urllib.request.urlopen", side_effect=_http_error(500)):
            with pytest.raises(SecretLookupError, match="HTTP 500"):
                VaultHttpSecretStore("http://vault", "t").get("kv/newsletter", "app_id")


class TestSplitKvPath:
    def test_splits_mount(self):
        assert split_kv_path("kv/newsletter") == ("kv", "newsletter")
        assert split_kv_path("/secret/apps/newsletter") == ("secret", "apps/newsletter")

    def test_rejects_bare_mount(self):
        with pytest.raises(SecretNotFoundError):
            split_kv_path("kv")
