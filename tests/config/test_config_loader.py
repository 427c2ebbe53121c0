# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for config loader, the entry point for all config loading in logitloom.

We test:
  1. Valid YAML loads into a frozen, correct config object
  2. Missing required fields raise ConfigValidationError
  3. Unknown fields raise ConfigValidationError (extra="forbid")
  4. Broken YAML raises ConfigLoadError
  5. Loaded config is truly immutable
  6. Configs for another major config_version are refused
"""

import textwrap
from pathlib import Path

import pytest
from pydantic import ValidationError

from logitloom.config.exceptions import ConfigError, ConfigLoadError, ConfigValidationError
from logitloom.config.loader import load_config


class TestLoadValidConfig:
    def test_loads_minimal_valid_config(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        assert config.global_config.project_name == "logitloom-test"
        assert config.global_config.config_version == "1.0.0"
        assert config.global_config.log_level == "DEBUG"

    def test_missing_sections_get_defaults(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        assert config.generation.max_new_tokens == 256
        assert config.generation.temperature == 1.0
        assert config.generation.top_p == 0.9
        assert config.generation.top_k == 50
        assert config.generation.stop_sequence is None
        assert config.generation.do_sample is True
        assert config.generation.seed == -1
        assert config.model.source is None
        assert config.model.device == "cpu"
        assert config.hub.endpoint == "https://huggingface.co"
        assert config.hub.token_env == "HF_TOKEN"

    def test_loads_every_section(self, full_config_file: Path) -> None:
        config = load_config(full_config_file)
        assert config.model.source == "acme/tiny-model"
        assert config.model.context_length == 512
        assert config.generation.stop_sequence == "###"
        assert config.generation.stream is True
        assert config.hub.timeout_seconds == 5.0


class TestValidationErrors:
    def test_missing_required_field(self, invalid_config_file: Path) -> None:
        with pytest.raises(ConfigValidationError):
            load_config(invalid_config_file)

    def test_unknown_field_rejected(self, tmp_path: Path) -> None:
        config_file = tmp_path / "extra.yaml"
        config_file.write_text(
            textwrap.dedent("""\
                global:
                  config_version: "1.0.0"
                generation:
                  beam_width: 4
            """),
            encoding="utf-8",
        )
        with pytest.raises(ConfigValidationError):
            load_config(config_file)

    @pytest.mark.parametrize(
        "section",
        [
            "generation:\n  max_new_tokens: 0",
            "generation:\n  top_p: 1.5",
            "generation:\n  temperature: -0.1",
            "global:\n  config_version: '1'\n  log_level: LOUD",
        ],
    )
    def test_out_of_range_values_rejected(self, tmp_path: Path, section: str) -> None:
        body = section if section.startswith("global") else "global:\n  config_version: '1'\n" + section
        config_file = tmp_path / "bad.yaml"
        config_file.write_text(body + "\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            load_config(config_file)

    def test_validation_error_is_config_error(self, invalid_config_file: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(invalid_config_file)


class TestLoadErrors:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_directory_is_not_a_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError):
            load_config(tmp_path)

    def test_broken_yaml(self, broken_yaml_file: Path) -> None:
        with pytest.raises(ConfigLoadError):
            load_config(broken_yaml_file)

    def test_non_mapping_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(config_file)


class TestConfigVersion:
    @pytest.mark.parametrize("version", ["1", "1.0.0", "1.7"])
    def test_major_one_accepted(self, tmp_path: Path, version: str) -> None:
        config_file = tmp_path / "v.yaml"
        config_file.write_text(f"global:\n  config_version: '{version}'\n", encoding="utf-8")
        assert load_config(config_file).global_config.config_version == version

    def test_newer_major_rejected(self, tmp_path: Path) -> None:
        config_file = tmp_path / "v2.yaml"
        config_file.write_text("global:\n  config_version: '2.0.0'\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="version 2 config"):
            load_config(config_file)

    def test_non_numeric_version_rejected(self, tmp_path: Path) -> None:
        config_file = tmp_path / "vx.yaml"
        config_file.write_text("global:\n  config_version: 'latest'\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="config_version"):
            load_config(config_file)


class TestErrorMessages:
    def test_names_the_offending_field(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.yaml"
        config_file.write_text(
            "global:\n  config_version: '1'\ngeneration:\n  top_p: 1.5\n", encoding="utf-8"
        )
        with pytest.raises(ConfigValidationError) as excinfo:
            load_config(config_file)

        message = str(excinfo.value)
        assert "generation.top_p" in message
        assert "\n" not in message

    def test_empty_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="empty"):
            load_config(config_file)


class TestPathHandling:
    def test_accepts_string_path(self, tmp_config_file: Path) -> None:
        assert load_config(str(tmp_config_file)).global_config.config_version == "1.0.0"

    def test_expands_home(self, tmp_config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOME", str(tmp_config_file.parent))
        assert load_config(f"~/{tmp_config_file.name}").global_config.project_name == "logitloom-test"


class TestImmutability:
    def test_config_is_frozen(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        with pytest.raises(ValidationError):
            config.generation.temperature = 2.0  # type: ignore[misc]
