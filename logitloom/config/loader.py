# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Loading logitloom's YAML config.

A config file is optional for every command; when one is given it must be
right. `load_config` either returns a frozen LogitloomConfig or raises one
of two errors the CLI turns into exit code 2:

  - ConfigLoadError when the file can't be read or isn't a YAML mapping
  - ConfigValidationError when the mapping doesn't fit the schema, or was
    written for a config major version this build doesn't understand

Validation messages are flattened to one `section.field: problem` line per
error, since they end up in a single JSON log line.
"""

from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from logitloom.config.exceptions import ConfigLoadError, ConfigValidationError
from logitloom.config.schema import LogitloomConfig

SUPPORTED_CONFIG_MAJOR = 1


def _parse_mapping(config_path: Path) -> dict[str, Any]:
    if not config_path.is_file():
        reason = "is not a file" if config_path.exists() else "not found"
        raise ConfigLoadError(f"Config file {reason}: {config_path}")

    try:
        parsed = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as err:
        raise ConfigLoadError(f"Cannot read config file {config_path}: {err}") from err
    except yaml.YAMLError as err:
        raise ConfigLoadError(f"Invalid YAML in {config_path}: {err}") from err

    if parsed is None:
        raise ConfigLoadError(f"Config file is empty: {config_path}")
    if not isinstance(parsed, dict):
        raise ConfigLoadError(
            f"Config file must hold a YAML mapping, got a {type(parsed).__name__}: {config_path}"
        )
    return parsed


def _describe(err: ValidationError) -> str:
    """One line per problem, keyed by the dotted YAML path (`generation.top_p`)."""
    lines = []
    for problem in err.errors():
        where = ".".join(str(part) for part in problem["loc"]) or "<root>"
        lines.append(f"{where}: {problem['msg']}")
    return "; ".join(lines)


def _check_version(config: LogitloomConfig, config_path: Path) -> None:
    version = config.global_config.config_version
    major = version.split(".", 1)[0]
    if not major.isdigit():
        raise ConfigValidationError(
            f"global.config_version must look like '1' or '1.2.0', got {version!r} in {config_path}"
        )
    if int(major) != SUPPORTED_CONFIG_MAJOR:
        raise ConfigValidationError(
            f"{config_path} is a version {major} config; this logitloom reads "
            f"version {SUPPORTED_CONFIG_MAJOR} configs"
        )


def load_config(config_path: Union[str, Path]) -> LogitloomConfig:
    """
    Read, validate and version-check a YAML config file.

    `~` in the path is expanded.

    Raises:
        ConfigLoadError: Missing, unreadable, empty or non-mapping file, or bad YAML.
        ConfigValidationError: Schema violation or unsupported config_version.
    """
    path = Path(config_path).expanduser()
    raw = _parse_mapping(path)

    try:
        config = LogitloomConfig.model_validate(raw)
    except ValidationError as err:
        raise ConfigValidationError(f"Invalid config {path}: {_describe(err)}") from err

    _check_version(config, path)
    return config
