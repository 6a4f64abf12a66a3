"""Tests for wagateway/main.py: command line handling and app factory."""

import importlib
import logging
from unittest.mock import patch

import pytest

from wagateway import main as gateway_main
from wagateway.config import GatewayConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("INSTANCE_NAME", "AUTHENTICATION_API_KEY", "PORT", "WEBHOOK_URL",
                 "LOG_LEVEL", "GATEWAY_CONFIG", "PRINT_QR_IN_TERMINAL"):
        monkeypatch.delenv(name, raising=False)


class TestParseArgs:
    """Test argument parsing."""

    def test_defaults(self):
        args = gateway_main.parse_args([])
        assert args.config is None
        assert args.port is None
        assert args.no_terminal_qr is False

    def test_flags(self):
        args = gateway_main.parse_args([
            "--instance-name", "sales", "--port", "9000",
            "--webhook-url", "https://n8n.example.com/hook", "--no-terminal-qr",
        ])
        assert args.instance_name == "sales"
        assert args.port == 9000
        assert args.webhook_url == "https://n8n.example.com/hook"
        assert args.no_terminal_qr is True


class TestBuildConfig:
    """Test configuration precedence."""

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("INSTANCE_NAME", "from-env")
        monkeypatch.setenv("PORT", "7000")

        config = gateway_main.build_config(gateway_main.parse_args(["--instance-name", "from-cli"]))

        assert config.instance_name == "from-cli"
        assert config.port == 7000

    def test_config_file(self, tmp_path):
        path = tmp_path / "gateway.json"
        path.write_text('{"instance_name": "from-file", "auth_key": "k"}')

        config = gateway_main.build_config(gateway_main.parse_args(["--config", str(path)]))

        assert config.instance_name == "from-file"
        assert config.auth_key == "k"

    def test_no_terminal_qr(self):
        config = gateway_main.build_config(gateway_main.parse_args(["--no-terminal-qr"]))
        assert config.print_qr_in_terminal is False


class TestMain:
    """Test the entry point."""

    def test_invalid_config_exits_with_error(self):
        with patch("wagateway.main.uvicorn.run") as run:
            assert gateway_main.main([]) == 1
        run.assert_not_called()

    def test_runs_uvicorn(self, monkeypatch):
        monkeypatch.setenv("AUTHENTICATION_API_KEY", "secret")
        with patch("wagateway.main.uvicorn.run") as run:
            assert gateway_main.main(["--port", "9001"]) == 0

        kwargs = run.call_args[1]
        assert kwargs["port"] == 9001
        assert kwargs["log_config"] is None
        assert run.call_args[0][0].state.config.port == 9001

    def test_builds_one_app(self, monkeypatch):
        monkeypatch.setenv("AUTHENTICATION_API_KEY", "secret")
        with patch("wagateway.main.uvicorn.run") as run, \
                patch("wagateway.main.create_app", wraps=gateway_main.create_app) as factory:
            assert gateway_main.main([]) == 0

        factory.assert_called_once()
        assert run.call_args[0][0].state.config.auth_key == "secret"

    def test_setup_logging_level(self):
        with patch("wagateway.main.logging.basicConfig") as basic_config:
            gateway_main.setup_logging("DEBUG")
        assert basic_config.call_args[1]["level"] == logging.DEBUG


class TestCreateApp:
    """Test application wiring."""

    def test_state_wiring(self, config, fake_client):
        app = gateway_main.create_app(config, fake_client)
        assert app.state.config is config
        assert app.state.controller.session_client is fake_client
        assert app.state.controller.notifier is app.state.notifier

    def test_loads_config_when_omitted(self, monkeypatch):
        monkeypatch.setenv("INSTANCE_NAME", "env-instance")
        app = gateway_main.create_app()
        assert isinstance(app.state.config, GatewayConfig)
        assert app.state.config.instance_name == "env-instance"

    def test_import_does_not_build_app(self, monkeypatch):
        monkeypatch.setenv("BRIDGE_URL", "ftp://wa_bridge:3001/session")
        importlib.reload(gateway_main)
        assert not hasattr(gateway_main, "app")
