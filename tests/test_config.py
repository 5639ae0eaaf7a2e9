"""
Configuration system tests.
"""

import pytest

from reliefchain.config import (
    ConfigError,
    ConfigManager,
    ConfigValue,
    ReliefChainConfig,
    ValidationError,
    get_config,
    get_config_manager,
)


class TestConfigValue:
    """Tests for ConfigValue."""

    def test_default(self):
        value = ConfigValue(default=5)
        assert value.get() == 5

    def test_env_var_overrides(self, monkeypatch):
        value = ConfigValue(default=5, env_var="RELIEFCHAIN_TEST_VALUE")
        value.set(7)
        monkeypatch.setenv("RELIEFCHAIN_TEST_VALUE", "9")
        assert value.get() == 9

    def test_string_coerced_on_set(self):
        value = ConfigValue(default=5)
        value.set("12")
        assert value.get() == 12

    def test_bad_int(self):
        value = ConfigValue(default=5)
        with pytest.raises(ConfigError):
            value.set("many")

    def test_validator(self):
        value = ConfigValue(default=5, validator=lambda x: x > 0)
        with pytest.raises(ValidationError):
            value.set(0)
        assert value.get() == 5

    def test_on_change(self):
        seen = []
        value = ConfigValue(default=1)
        value.on_change(lambda old, new: seen.append((old, new)))
        value.set(2)
        assert seen == [(None, 2)]


class TestReliefChainConfig:
    """Tests for the root configuration."""

    def test_defaults(self):
        config = ReliefChainConfig()
        assert config.registry.max_uri_length.get() == 256
        assert config.registry.max_description_length.get() == 500
        assert config.registry.max_tags.get() == 10
        assert config.registry.max_tag_length.get() == 0
        assert config.registry.max_versions.get() == 5
        assert config.registry.max_licenses.get() == 0
        assert config.registry.null_identity.get() == "invalid"
        assert config.ledger.genesis_height.get() == 100

    def test_to_dict(self):
        data = ReliefChainConfig().to_dict()
        assert data["registry"]["max_versions"] == 5
        assert data["observability"]["log_format"] == "json"

    def test_to_yaml(self):
        assert "genesis_height: 100" in ReliefChainConfig().to_yaml()


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_singleton(self):
        assert ConfigManager() is ConfigManager()
        assert get_config() is get_config_manager().config

    def test_get_set_by_path(self):
        mgr = get_config_manager()
        mgr.set("registry.max_versions", 8)
        assert mgr.get("registry.max_versions") == 8

    def test_invalid_path(self):
        mgr = get_config_manager()
        with pytest.raises(ConfigError):
            mgr.get("registry.nope")
        with pytest.raises(ConfigError):
            mgr.set("registry", 1)

    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            get_config_manager().set("observability.log_level", "loud")

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "reliefchain.yaml"
        path.write_text("registry:\n  max_tags: 3\nledger:\n  genesis_height: 0\n")
        mgr = get_config_manager()
        mgr.load_from_file(path)
        assert mgr.get("registry.max_tags") == 3
        assert mgr.get("ledger.genesis_height") == 0

    def test_invalid_file_leaves_config_untouched(self, tmp_path):
        path = tmp_path / "reliefchain.yaml"
        path.write_text("registry:\n  max_tags: 3\n  max_versions: 0\n")
        mgr = get_config_manager()
        with pytest.raises(ValidationError):
            mgr.load_from_file(path)
        assert mgr.get("registry.max_tags") == 10

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "reliefchain.yaml"
        path.write_text("registry:\n  max_tagz: 3\n")
        with pytest.raises(ConfigError, match="registry.max_tagz"):
            get_config_manager().load_from_file(path)

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "reliefchain.yaml"
        path.write_text("registry: [unclosed\n")
        with pytest.raises(ConfigError):
            get_config_manager().load_from_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            get_config_manager().load_from_file(tmp_path / "absent.yaml")

    def test_load_defaults_reads_project_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        (tmp_path / "reliefchain.yaml").write_text("registry:\n  max_versions: 7\n")
        mgr = get_config_manager()
        mgr.load_defaults()
        assert mgr.get("registry.max_versions") == 7

    def test_reload_notifies_watchers(self, tmp_path):
        path = tmp_path / "reliefchain.yaml"
        path.write_text("registry:\n  max_tags: 4\n")
        mgr = get_config_manager()
        mgr.load_from_file(path)

        seen = []
        mgr.watch(lambda cfg: seen.append(cfg.registry.max_tags.get()))
        path.write_text("registry:\n  max_tags: 6\n")
        mgr.reload()
        assert seen == [6]

    def test_validate_reports_bad_env(self, monkeypatch):
        monkeypatch.setenv("RELIEFCHAIN_MAX_TAGS", "lots")
        errors = get_config_manager().validate()
        assert any("registry.max_tags" in e for e in errors)

    def test_validate_clean(self):
        assert get_config_manager().validate() == []

    def test_export_schema(self):
        schema = get_config_manager().export_schema()
        entry = schema["properties"]["registry"]["max_versions"]
        assert entry["type"] == "int"
        assert entry["env_var"] == "RELIEFCHAIN_MAX_VERSIONS"
