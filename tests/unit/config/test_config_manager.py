"""Tests for TOML + environment configuration loading."""

from __future__ import annotations

import pytest
import toml

import tremote.config.config as config_module
from tremote.config.config import ConfigManager, get_config, init_config, reload_config, set_config
from tremote.models import Config, LogLevel, RPCConfig, ServerConfig
from tremote.utils.exceptions import ConfigurationError

pytestmark = [pytest.mark.unit, pytest.mark.config]


@pytest.fixture(autouse=True)
def _fresh_global_config(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "_config_manager", None)


def test_defaults(tmp_path):
    manager = ConfigManager()

    assert manager.config_file is None
    assert manager.config.rpc.request_timeout == 30.0
    assert manager.config.rpc.min_rpc_version == 14
    assert manager.config.rpc.max_rpc_version == 17
    assert manager.config.trust.trust_store_path == str(tmp_path / "trust.json")


def test_config_file_in_cwd_is_found(tmp_path):
    path = tmp_path / "tremote.toml"
    path.write_text(toml.dumps({"rpc": {"request_timeout": 12.5}}), encoding="utf-8")

    manager = ConfigManager()

    assert manager.config_file == path
    assert manager.config.rpc.request_timeout == 12.5


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "custom.toml"
    path.write_text(
        toml.dumps({"rpc": {"request_timeout": 12.5, "rpc_path": "/rpc"}}), encoding="utf-8"
    )
    monkeypatch.setenv("TREMOTE_REQUEST_TIMEOUT", "5")
    monkeypatch.setenv("TREMOTE_RPC_LOGGING", "off")
    monkeypatch.setenv("TREMOTE_LOG_LEVEL", "DEBUG")

    config = ConfigManager(path).config

    assert config.rpc.request_timeout == 5.0
    assert config.rpc.rpc_path == "/rpc"
    assert config.rpc.enable_logging is False
    assert config.observability.log_level is LogLevel.DEBUG


def test_invalid_values_raise(monkeypatch):
    monkeypatch.setenv("TREMOTE_MIN_RPC_VERSION", "18")

    with pytest.raises(ConfigurationError):
        ConfigManager()


def test_unreadable_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("this is = = not toml", encoding="utf-8")

    assert ConfigManager(path).config.rpc == RPCConfig()


def test_export_and_save(tmp_path):
    manager = ConfigManager()
    target = manager.save(tmp_path / "out" / "tremote.toml")

    data = toml.loads(target.read_text(encoding="utf-8"))
    assert data["rpc"]["max_rpc_version"] == 17
    assert manager.config_file == target


def test_save_without_target_raises():
    with pytest.raises(ConfigurationError):
        ConfigManager().save()


def test_global_helpers(tmp_path):
    manager = init_config()
    assert get_config() is manager.config

    replacement = Config(rpc=RPCConfig(request_timeout=3.0))
    set_config(replacement)
    assert get_config().rpc.request_timeout == 3.0

    (tmp_path / "tremote.toml").write_text("[rpc]\nrequest_timeout = 7.0\n", encoding="utf-8")
    manager.config_file = tmp_path / "tremote.toml"
    assert reload_config().rpc.request_timeout == 7.0


def test_reload_requires_init():
    with pytest.raises(ConfigurationError):
        reload_config()


class TestServerConfig:
    def test_derived_values(self):
        server = ServerConfig(host="NAS.local", port=443, path="rpc", is_secure=True, username="admin")

        assert server.base_url == "https://NAS.local:443/rpc"
        assert server.display_address == "NAS.local:443"
        assert server.identity.storage_key == "nas.local:443:true"
        assert server.credentials_key.account == "admin/nas.local:443/https"

    def test_ipv6_host(self):
        server = ServerConfig(host="fd00::10", port=9091, username="admin")

        assert server.base_url == "http://[fd00::10]:9091/transmission/rpc"
        assert server.display_address == "[fd00::10]:9091"
        assert server.identity.storage_key == "fd00::10:9091:false"

    def test_no_username_no_credentials_key(self):
        assert ServerConfig(host="nas.local").credentials_key is None

    def test_ids_are_unique(self):
        assert ServerConfig(host="a").id != ServerConfig(host="a").id

    @pytest.mark.parametrize("port", [0, 70000])
    def test_port_validated(self, port):
        with pytest.raises(ValueError):
            ServerConfig(host="nas.local", port=port)
