"""
specdeploy CLI tests.
"""

from pathlib import Path

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from specdeploy import cli  # noqa: E402
from specdeploy.cli import (  # noqa: E402
    build_platform,
    build_renderer,
    build_secret_store,
    main,
    parse_arguments,
)
from specdeploy.config import PipelineConfig, RuntimeEnvironment  # noqa: E402
from specdeploy.errors import ApplyRejectReason  # noqa: E402
from specdeploy.fakes import InMemoryPlatform, InMemorySecretStore  # noqa: E402
from specdeploy.platform_client import DigitalOceanApiClient, DoctlPlatformClient  # noqa: E402
from specdeploy.renderer import ConsulTemplateRenderer, Jinja2Renderer  # noqa: E402
from specdeploy.secret_store import VaultCliSecretStore, VaultHttpSecretStore  # noqa: E402


TEMPLATE = 'token: {{ secret("kv/newsletter", "authorization_token") }}\nurl: {{ env.APP_BASE_URL }}\n'


class TestParseArgumentsDefaults:
    def test_default_values(self):
        args = parse_arguments([])

        assert args.dir == Path.cwd()
        assert args.config is None
        assert args.template is None
        assert args.output is None
        assert args.app_id_path is None
        assert args.app_id_field is None
        assert args.secrets_backend is None
        assert args.renderer is None
        assert args.platform is None
        assert args.log_level is None


class TestParseArgumentsFlags:
    def test_paths_and_backends(self):
        args = parse_arguments([
            "-d", "/srv/newsletter",
            "-t", "app.yaml.tmpl",
            "-o", "app.yaml",
            "--app-id-path", "kv/staging",
            "--app-id-field", "staging_app_id",
            "--secrets-backend", "vault-http",
            "--renderer", "jinja2",
            "--platform", "api",
        ])

        assert args.dir == Path("/srv/newsletter")
        assert args.template == Path("app.yaml.tmpl")
        assert args.output == Path("app.yaml")
        assert args.app_id_path == "kv/staging"
        assert args.app_id_field == "staging_app_id"
        assert args.secrets_backend == "vault-http"
        assert args.renderer == "jinja2"
        assert args.platform == "api"

    def test_rejects_unknown_backend(self):
        with pytest.raises(SystemExit):
            parse_arguments(["--platform", "heroku"])

    def test_has_docstring(self):
        assert parse_arguments.__doc__ is not None
        assert "arguments" in parse_arguments.__doc__.lower()


class TestBuildAdapters:
    def test_defaults_use_command_line_tools(self, tmp_path):
        config = PipelineConfig(working_dir=tmp_path)
        environment = RuntimeEnvironment(variables={"VAULT_ADDR": "http://127.0.0.1:8200"})

        store = build_secret_store(config, environment)

        assert isinstance(store, VaultCliSecretStore)
        assert isinstance(build_renderer(config, environment, store), ConsulTemplateRenderer)
        assert isinstance(build_platform(config, environment), DoctlPlatformClient)

    def test_http_backends(self, tmp_path):
        config = PipelineConfig(
            working_dir=tmp_path,
            secrets_backend="vault-http",
            renderer_backend="jinja2",
            platform_backend="api",
        )
        environment = RuntimeEnvironment(variables={
            "VAULT_ADDR": "http://127.0.0.1:8200/",
            "VAULT_TOKEN": "s.token",
            "DIGITALOCEAN_ACCESS_TOKEN": "dop_v1",
        })

        store = build_secret_store(config, environment)
        renderer = build_renderer(config, environment, store)
        platform = build_platform(config, environment)

        assert isinstance(store, VaultHttpSecretStore)
        assert store.address == "http://127.0.0.1:8200"
        assert isinstance(renderer, Jinja2Renderer)
        assert renderer.secret_store is store
        assert isinstance(platform, DigitalOceanApiClient)
        assert platform.session.headers["Authorization"] == "Bearer dop_v1"


@pytest.fixture
def deploy_dir(tmp_path, monkeypatch):
    (tmp_path / "spec.yaml.tmpl").write_text(TEMPLATE, encoding="utf-8")
    monkeypatch.setenv("VAULT_ADDR", "https://vault.example.com:8200")
    monkeypatch.setenv("APP_BASE_URL", "https://news.example.com")
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/local/bin/{name}")
    return tmp_path


def _use_fakes(monkeypatch, platform: InMemoryPlatform, app_id: str = "app-123") -> InMemorySecretStore:
    store = InMemorySecretStore({"kv/newsletter": {"authorization_token": "tok-123", "app_id": app_id}})
    monkeypatch.setattr(cli, "build_secret_store", lambda config, environment: store)
    monkeypatch.setattr(cli, "build_platform", lambda config, environment: platform)
    return store


class TestMain:
    def test_successful_run(self, deploy_dir, monkeypatch, capsys):
        platform = InMemoryPlatform(app_ids=["app-123"])
        _use_fakes(monkeypatch, platform)

        exit_code = main(["-d", str(deploy_dir), "--renderer", "jinja2"])

        assert exit_code == 0
        assert not (deploy_dir / "spec.yaml").exists()
        assert platform.specs["app-123"] == "token: tok-123\nurl: https://news.example.com\n"
        assert "[SUCCESS]" in capsys.readouterr().out

    def test_missing_vault_addr(self, deploy_dir, monkeypatch, capsys):
        platform = InMemoryPlatform(app_ids=["app-123"])
        store = _use_fakes(monkeypatch, platform)
        monkeypatch.delenv("VAULT_ADDR")

        exit_code = main(["-d", str(deploy_dir), "--renderer", "jinja2"])

        assert exit_code == 2
        assert "VAULT_ADDR must be set" in capsys.readouterr().err
        assert store.calls == []
        assert not (deploy_dir / "spec.yaml").exists()

    def test_apply_failure_keeps_spec(self, deploy_dir, monkeypatch, capsys):
        platform = InMemoryPlatform(app_ids=["app-123"])
        _use_fakes(monkeypatch, platform, app_id="app-unknown")

        exit_code = main(["-d", str(deploy_dir), "--renderer", "jinja2"])

        assert exit_code == 4
        err = capsys.readouterr().err
        assert "[apply]" in err
        assert ApplyRejectReason.UNKNOWN_APP_ID.value in err
        assert "left on disk" in err
        assert (deploy_dir / "spec.yaml").exists()

    def test_bad_config_file(self, deploy_dir, capsys):
        (deploy_dir / "specdeploy.toml").write_text('[renderer]\nbackend = "mustache"\n', encoding="utf-8")

        exit_code = main(["-d", str(deploy_dir)])

        assert exit_code == 2
        assert "Unsupported renderer backend" in capsys.readouterr().err

    def test_mistyped_config_value(self, deploy_dir, capsys):
        (deploy_dir / "specdeploy.toml").write_text('[pipeline]\ntemplate = 5\n', encoding="utf-8")

        exit_code = main(["-d", str(deploy_dir)])

        assert exit_code == 2
        assert "[precondition]" in capsys.readouterr().err
