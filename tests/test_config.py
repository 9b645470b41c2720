"""Configuration: defaults, YAML files, environment overrides, validation."""

import pytest

from anonid.config import ConfigError, ConfigValue, ValidationError, get_config_manager


class TestDefaults:

    def test_values(self, config_manager):
        assert config_manager.get("core.administrator") == ""
        assert config_manager.get("core.fsync") is True
        assert config_manager.get("verification.proof_system") == "pedersen"
        assert config_manager.get("verification.freshness_window_seconds") == 0
        assert config_manager.get("observability.log_format") == "json"

    def test_defaults_are_valid(self, config_manager):
        assert config_manager.validate() == []

    def test_singleton(self, config_manager):
        assert get_config_manager() is config_manager


class TestFiles:

    def test_load(self, config_manager, tmp_path):
        path = tmp_path / "anonid.yaml"
        path.write_text(
            "core:\n"
            "  administrator: did:key:z6MkAdmin\n"
            "verification:\n"
            "  freshness_window_seconds: 300\n",
            encoding="utf-8",
        )
        config_manager.load_from_file(path)
        assert config_manager.get("core.administrator") == "did:key:z6MkAdmin"
        assert config_manager.get("verification.freshness_window_seconds") == 300
        assert config_manager.loaded_paths == [path]

    def test_empty_file(self, config_manager, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        config_manager.load_from_file(path)
        assert config_manager.loaded_paths == []

    def test_missing_file(self, config_manager, tmp_path):
        with pytest.raises(ConfigError):
            config_manager.load_from_file(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, config_manager, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("core: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigError):
            config_manager.load_from_file(path)

    def test_root_must_be_mapping(self, config_manager, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            config_manager.load_from_file(path)

    def test_unknown_key(self, config_manager, tmp_path):
        path = tmp_path / "typo.yaml"
        path.write_text("verification:\n  proof_sytem: groth16\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="verification.proof_sytem"):
            config_manager.load_from_file(path)

    def test_invalid_value(self, config_manager, tmp_path):
        path = tmp_path / "bad_value.yaml"
        path.write_text("verification:\n  proof_system: bulletproofs\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            config_manager.load_from_file(path)


class TestRuntime:

    def test_set_and_reset(self, config_manager):
        config_manager.set("verification.freshness_window_seconds", "45")
        assert config_manager.get("verification.freshness_window_seconds") == 45
        config_manager.reset()
        assert config_manager.get("verification.freshness_window_seconds") == 0

    def test_rejects_invalid(self, config_manager):
        with pytest.raises(ValidationError):
            config_manager.set("verification.freshness_window_seconds", -1)
        with pytest.raises(ValidationError):
            config_manager.set("observability.log_level", "verbose")

    def test_invalid_path(self, config_manager):
        with pytest.raises(ConfigError):
            config_manager.get("verification.nope")
        with pytest.raises(ConfigError):
            config_manager.set("verification", "x")

    def test_section_get(self, config_manager):
        section = config_manager.get("verification")
        assert section.proof_system.get() == "pedersen"

    def test_groth16_needs_key(self, config_manager):
        config_manager.set("verification.proof_system", "groth16")
        errors = config_manager.validate()
        assert len(errors) == 1
        assert errors[0].startswith("verification.verification_key_path")

    def test_to_yaml_round_trip(self, config_manager):
        import yaml

        config_manager.set("core.administrator", "did:key:z6MkAdmin")
        data = yaml.safe_load(config_manager.config.to_yaml())
        assert data["core"]["administrator"] == "did:key:z6MkAdmin"


class TestEnvironment:

    def test_env_overrides_file(self, config_manager, monkeypatch):
        config_manager.set("verification.proof_system", "pedersen")
        monkeypatch.setenv("ANONID_PROOF_SYSTEM", "groth16")
        assert config_manager.get("verification.proof_system") == "groth16"

    def test_env_coercion(self, config_manager, monkeypatch):
        monkeypatch.setenv("ANONID_EVENT_LOG_FSYNC", "off")
        monkeypatch.setenv("ANONID_FRESHNESS_WINDOW", "90")
        assert config_manager.get("core.fsync") is False
        assert config_manager.get("verification.freshness_window_seconds") == 90

    def test_bad_env_value_reported_by_validate(self, config_manager, monkeypatch):
        monkeypatch.setenv("ANONID_FRESHNESS_WINDOW", "soon")
        errors = config_manager.validate()
        assert any(e.startswith("verification.freshness_window_seconds") for e in errors)


def test_change_callbacks():
    seen = []
    value = ConfigValue(default=1, validator=lambda x: x > 0)
    value.on_change(lambda old, new: seen.append((old, new)))
    value.set(5)
    value.set("7")
    assert seen == [(None, 5), (5, 7)]
