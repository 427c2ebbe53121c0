# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model resolution: turn whatever the user typed into files on disk.

`--model` can be a local file, a local directory, or a hub repository id.
The order of preference is simple:

  1. If the path exists locally, use it.
  2. Else if it looks like `user/repo`, go through the hub (cache first).
  3. Else give up with ModelNotFoundError.

Once we have a directory, we look for a weights file, a tokenizer, and
config.json (for the context length, vocab size and EOS id).
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from logitloom.hub.core import ModelHub, is_repo_id
from logitloom.hub.exceptions import ModelNotFoundError
from logitloom.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)

DEFAULT_CONTEXT_LENGTH = 2048

# first match wins; TorchScript first since that's what we can actually run
_WEIGHT_PATTERNS = ("*.pt", "*.pth", "*.ts", "*.safetensors", "*.bin", "*.onnx")
_CONTEXT_LENGTH_KEYS = ("max_position_embeddings", "n_positions", "max_seq_len")

_FORMATS = {
    ".pt": "torchscript",
    ".pth": "torchscript",
    ".ts": "torchscript",
    ".safetensors": "safetensors",
    ".bin": "pytorch",
    ".onnx": "onnx",
}


@dataclass(frozen=True)
class ResolvedModel:
    """Everything the loader needs to know about a model on disk."""

    name: str
    model_path: Path
    tokenizer_path: Optional[Path]
    model_format: str
    context_length: int = DEFAULT_CONTEXT_LENGTH
    vocab_size: Optional[int] = None
    eos_token_id: Optional[int] = None


def detect_format(path: Path) -> str:
    """Model format from the file suffix; unknown suffixes count as torchscript."""
    return _FORMATS.get(path.suffix.lower(), "torchscript")


def find_weights_file(model_dir: Path) -> Optional[Path]:
    """
    First weights file in the directory by format priority.

    Files whose names mention "tokenizer" or "optimizer" are skipped;
    they're serialized state, not the model.
    """
    for pattern in _WEIGHT_PATTERNS:
        for candidate in sorted(model_dir.glob(pattern)):
            lower = candidate.name.lower()
            if "tokenizer" in lower or "optimizer" in lower:
                continue
            return candidate
    return None


def read_model_config(model_dir: Path) -> dict[str, Any]:
    """config.json as a dict, or {} if it's missing or unreadable."""
    config_path = model_dir / "config.json"
    if not config_path.is_file():
        return {}
    try:
        parsed = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as err:
        logger.warning("Could not read config.json", extra={"path": str(config_path), "error": str(err)})
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _context_length(config: dict[str, Any]) -> int:
    for key in _CONTEXT_LENGTH_KEYS:
        value = config.get(key)
        if isinstance(value, int) and value > 0:
            return value
    return DEFAULT_CONTEXT_LENGTH


def _optional_int(config: dict[str, Any], key: str) -> Optional[int]:
    value = config.get(key)
    # some configs list several EOS ids; the first is the canonical one
    if isinstance(value, list) and value:
        value = value[0]
    return value if isinstance(value, int) else None


class ModelResolver:
    """Resolves model identifiers to a ResolvedModel."""

    def __init__(self, hub: Optional[ModelHub] = None) -> None:
        self._hub = hub or ModelHub()

    @property
    def hub(self) -> ModelHub:
        return self._hub

    def resolve(self, model_id: str, force_download: bool = False) -> ResolvedModel:
        """
        Resolve a local path or repository id.

        Raises:
            ModelNotFoundError: Neither an existing path nor a repository id.
            HubDownloadError: The repository had to be downloaded and couldn't be.
        """
        local = Path(model_id).expanduser()
        if local.exists():
            logger.info("Using local model", extra={"path": str(local)})
            return self._build(local, name=local.name)

        if is_repo_id(model_id):
            logger.info("Resolving hub model", extra={"repo_id": model_id})
            model_dir = self._hub.get_model(model_id, force=force_download)
            return self._build(model_dir, name=model_id)

        raise ModelNotFoundError(
            f"Model not found: {model_id}. "
            "Provide a valid local path or hub repository id (user/repo)"
        )

    def is_available(self, model_id: str) -> bool:
        """Is the model usable without a download?"""
        if Path(model_id).expanduser().exists():
            return True
        if is_repo_id(model_id):
            return self._hub.is_cached(model_id)
        return False

    def _build(self, path: Path, name: str) -> ResolvedModel:
        if path.is_dir():
            model_dir = path
            weights = find_weights_file(model_dir)
            model_path = weights or model_dir
            model_format = detect_format(weights) if weights is not None else "unknown"
        else:
            model_dir = path.parent
            model_path = path
            model_format = detect_format(path)

        tokenizer_json = model_dir / "tokenizer.json"
        config = read_model_config(model_dir)

        return ResolvedModel(
            name=name,
            model_path=model_path,
            tokenizer_path=tokenizer_json if tokenizer_json.is_file() else None,
            model_format=model_format,
            context_length=_context_length(config),
            vocab_size=_optional_int(config, "vocab_size"),
            eos_token_id=_optional_int(config, "eos_token_id"),
        )
