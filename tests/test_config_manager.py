import json

import pytest
import yaml

from models.config import AppConfig
from services.config_manager import ConfigManager
from services.logging_manager import LoggingManager


@pytest.mark.unit
class TestConfigManager:
    def test_defaults_without_file(self, tmp_path):
        cfg = ConfigManager(str(tmp_path / "missing.yaml")).load_config()
        assert cfg.cache.max_entries == 30
        assert cfg.quota.anonymous_limit == 5
        assert cfg.quota.authenticated_limit == 20
        assert cfg.thumbnails.max_size == 200
        assert cfg.hashing.match_tolerance == 0

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "quota": {"anonymous_limit": 3, "authenticated_limit": "50"},
            "share_card": {"output_format": "png"},
            "hashing": {"decode_timeout": 5},
        }), encoding="utf-8")
        cfg = ConfigManager(str(path)).load_config()
        assert cfg.quota.anonymous_limit == 3
        assert cfg.quota.authenticated_limit == 50
        assert cfg.share_card.output_format == "png"
        assert cfg.hashing.decode_timeout == 5.0
        assert isinstance(cfg.hashing.decode_timeout, float)

    def test_unknown_keys_are_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"nope": {"x": 1}, "cache": {"bogus": 1, "max_entries": 10}}), encoding="utf-8")
        cfg = ConfigManager(str(path)).load_config()
        assert cfg.cache.max_entries == 10
        assert not hasattr(cfg.cache, "bogus")

    def test_invalid_values_fail_validation(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"share_card": {"output_format": "gif"}}), encoding="utf-8")
        with pytest.raises(ValueError, match="output_format"):
            ConfigManager(str(path)).load_config()

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[x]", encoding="utf-8")
        with pytest.raises(ValueError):
            ConfigManager(str(path)).load_config()

    def test_save_roundtrip_without_secrets(self, tmp_path):
        cfg = AppConfig()
        cfg.analysis.api_key = "secret-key"
        cfg.quota.anonymous_limit = 7
        path = tmp_path / "out" / "config.yaml"
        ConfigManager().save_config(cfg, str(path))
        text = path.read_text(encoding="utf-8")
        assert "secret-key" not in text
        assert ConfigManager(str(path)).load_config().quota.anonymous_limit == 7

    def test_reload(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"cache": {"max_entries": 5}}), encoding="utf-8")
        manager = ConfigManager(str(path))
        assert manager.get_config().cache.max_entries == 5
        path.write_text(yaml.safe_dump({"cache": {"max_entries": 6}}), encoding="utf-8")
        assert manager.get_config().cache.max_entries == 5
        assert manager.reload_config().cache.max_entries == 6


@pytest.mark.unit
def test_parse_size():
    assert LoggingManager._parse_size("10MB") == 10 * 1024 * 1024
    assert LoggingManager._parse_size("512KB") == 512 * 1024
    assert LoggingManager._parse_size("2048") == 2048
    assert LoggingManager._parse_size("lots") == 10 * 1024 * 1024


@pytest.mark.unit
def test_env_var_points_to_config(tmp_path, monkeypatch):
    path = tmp_path / "photopath.yaml"
    ConfigManager().create_default_config_file(str(path))
    text = yaml.safe_load(path.read_text(encoding="utf-8"))
    text["upload"]["enabled"] = "false"
    path.write_text(yaml.safe_dump(text), encoding="utf-8")
    monkeypatch.setenv("PHOTOPATH_CONFIG", str(path))
    cfg = ConfigManager().load_config()
    assert cfg.upload.enabled is False


@pytest.mark.unit
def test_candidate_files_in_working_directory(tmp_path, monkeypatch):
    monkeypatch.delenv("PHOTOPATH_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    assert ConfigManager().config_path is None

    (tmp_path / "config.json").write_text(json.dumps({"cache": {"max_entries": 4}}), encoding="utf-8")
    assert ConfigManager().config_path == "config.json"
    assert ConfigManager().load_config().cache.max_entries == 4

    # photopath.* 优先于 config.*
    (tmp_path / "photopath.yml").write_text(yaml.safe_dump({"cache": {"max_entries": 8}}), encoding="utf-8")
    assert ConfigManager().config_path == "photopath.yml"
    assert ConfigManager().load_config().cache.max_entries == 8

    (tmp_path / "photopath.yaml").write_text(yaml.safe_dump({"cache": {"max_entries": 9}}), encoding="utf-8")
    assert ConfigManager().config_path == "photopath.yaml"
