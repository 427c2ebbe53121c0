# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for logitloom.

Every config section gets its own frozen pydantic model. Frozen means once
you create it, you cannot mutate it. Config mutation at runtime is a bug.

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

Only the `global` section is required. A config file that just pins the
generation defaults is perfectly valid; the CLI fills in the rest from
flags.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class GlobalConfig(BaseModel):
    """Cross-cutting settings: schema version, identity and observability."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(
        default="logitloom", description="Human-readable project identifier"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )


class ModelSourceConfig(BaseModel):
    """
    Where the model comes from and how to run it.

    `source` is either a local path or a hub repository id (`user/repo`);
    the resolver decides which at runtime.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    # "model_" is a protected namespace in pydantic, hence the neutral names
    source: Optional[str] = Field(
        default=None,
        description="Local model path or hub repository id",
    )
    tokenizer_path: Optional[str] = Field(
        default=None,
        description="Explicit tokenizer.json, overrides the one found next to the weights",
    )
    context_length: Optional[int] = Field(
        default=None,
        ge=1,
        description="Override for the backend's maximum context length",
    )
    device: str = Field(
        default="cpu",
        description="Torch device for the backend: cpu, cuda, mps or auto",
    )
    force_download: bool = Field(
        default=False,
        description="Re-download hub models even when they are cached",
    )


class GenerationSettings(BaseModel):
    """
    Default generation parameters.

    These mirror GenerationConfig field for field. Range checks on the
    sampling knobs are deliberately loose here: the sampling strategies
    validate what they actually use when they're built.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    max_new_tokens: int = Field(default=256, ge=1)
    temperature: float = Field(default=1.0, ge=0.0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)
    top_k: int = Field(default=50, ge=0)
    stop_sequence: Optional[str] = Field(default=None)
    do_sample: bool = Field(default=True)
    seed: int = Field(default=-1, description="Negative means non-reproducible sampling")
    stream: bool = Field(default=False)


class HubConfig(BaseModel):
    """Model hub access and local cache location."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    cache_dir: Optional[str] = Field(
        default=None,
        description="Model cache directory, defaults to ~/.logitloom/models",
    )
    endpoint: str = Field(default="https://huggingface.co")
    timeout_seconds: float = Field(default=60.0, gt=0.0)
    token_env: str = Field(
        default="HF_TOKEN",
        description="Environment variable holding the hub auth token",
    )


class LogitloomConfig(BaseModel):
    """
    Top-level config container.

    Sections not present in the YAML fall back to their defaults, except
    `global`, which every file must carry so we know what schema version
    it was written against.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    global_config: GlobalConfig = Field(alias="global")
    model: ModelSourceConfig = Field(default_factory=ModelSourceConfig)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    hub: HubConfig = Field(default_factory=HubConfig)
