# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Engine loader.

Takes a ResolvedModel (files already on disk) and builds a ready-to-use
InferenceEngine: tokenizer first, then the backend sized to match it.

What runs depends on what's there:

  - tokenizer.json next to the weights (or given explicitly) -> HFTokenizer,
    otherwise the word-level SimpleTokenizer
  - TorchScript weights (.pt / .pth / .ts) -> TorchBackend on the requested
    device
  - ONNX weights (.onnx) -> OnnxBackend, GPU execution providers first
    unless the device is "cpu"
  - anything else (safetensors, .bin, no weights at all) -> MockBackend

Both fallbacks log a WARNING. The mock backend produces noise, not text,
so a user who sees a warning there knows the output isn't from the model.

No internet calls happen here. Downloading is the hub's job.
"""

import logging
from pathlib import Path
from typing import Optional

import torch

from logitloom.hub.resolver import ResolvedModel
from logitloom.logging.logger import get_logger
from logitloom.serving.backend.core import (
    InferenceBackend,
    MockBackend,
    OnnxBackend,
    TorchBackend,
    resolve_device,
)
from logitloom.serving.engine.core import InferenceEngine
from logitloom.tokenizer.core import HFTokenizer, SimpleTokenizer, Tokenizer

logger: logging.Logger = get_logger(__name__)

DEFAULT_MOCK_VOCAB_SIZE = 32000


def load_tokenizer(resolved: ResolvedModel, tokenizer_path: Optional[Path] = None) -> Tokenizer:
    """
    Load the model's tokenizer, falling back to SimpleTokenizer.

    An explicit `tokenizer_path` wins over the one the resolver found.

    Raises:
        FileNotFoundError: An explicit tokenizer path doesn't exist.
    """
    path = tokenizer_path or resolved.tokenizer_path
    if path is not None:
        return HFTokenizer.from_file(path, eos_token_id=resolved.eos_token_id)

    logger.warning(
        "No tokenizer.json found, using word-level fallback tokenizer",
        extra={"model": resolved.name},
    )
    return SimpleTokenizer()


def load_backend(
    resolved: ResolvedModel,
    tokenizer: Tokenizer,
    device: str = "cpu",
    context_length: Optional[int] = None,
) -> InferenceBackend:
    """
    Build the forward-pass backend for a resolved model.

    The vocabulary size comes from config.json when it has one, otherwise
    from the tokenizer. For the mock backend a toy tokenizer's vocabulary
    is far too small to be useful, so it gets a fixed default instead.

    Raises:
        RuntimeError: The TorchScript or ONNX file exists but can't be loaded.
    """
    max_context = context_length or resolved.context_length
    is_file = resolved.model_path.is_file()

    if resolved.model_format == "torchscript" and is_file:
        torch_device = resolve_device(device)
        model = torch.jit.load(str(resolved.model_path), map_location=torch_device)
        model.eval()
        vocab_size = resolved.vocab_size or tokenizer.vocab_size
        logger.info(
            "TorchScript model loaded",
            extra={
                "path": str(resolved.model_path),
                "device": str(torch_device),
                "vocab_size": vocab_size,
                "context_length": max_context,
            },
        )
        return TorchBackend(
            model,
            vocab_size=vocab_size,
            max_context_length=max_context,
            device=torch_device,
        )

    if resolved.model_format == "onnx" and is_file:
        return OnnxBackend.from_file(
            resolved.model_path,
            vocab_size=resolved.vocab_size,
            max_context_length=max_context,
            device=device,
            fallback_vocab_size=None if isinstance(tokenizer, SimpleTokenizer) else tokenizer.vocab_size,
        )

    if isinstance(tokenizer, SimpleTokenizer):
        vocab_size = resolved.vocab_size or DEFAULT_MOCK_VOCAB_SIZE
    else:
        vocab_size = resolved.vocab_size or tokenizer.vocab_size

    logger.warning(
        "No runnable model weights, using mock backend",
        extra={
            "model": resolved.name,
            "format": resolved.model_format,
            "path": str(resolved.model_path) if is_file else None,
            "vocab_size": vocab_size,
        },
    )
    return MockBackend(
        vocab_size=vocab_size,
        max_context_length=max_context,
        eos_token_id=tokenizer.eos_token_id,
    )


def load_engine(
    resolved: ResolvedModel,
    device: str = "cpu",
    context_length: Optional[int] = None,
    tokenizer_path: Optional[Path] = None,
) -> InferenceEngine:
    """
    Load everything needed to generate from a resolved model.

    Args:
        resolved: Output of ModelResolver.resolve().
        device: cpu, cuda, mps or auto. Only used by TorchBackend.
        context_length: Overrides the context length read from config.json.
        tokenizer_path: Overrides the tokenizer found next to the weights.

    Returns:
        A ready InferenceEngine.
    """
    tokenizer = load_tokenizer(resolved, tokenizer_path)
    backend = load_backend(resolved, tokenizer, device=device, context_length=context_length)

    engine = InferenceEngine(
        backend=backend,
        tokenizer=tokenizer,
        model_name=resolved.name,
        model_format=resolved.model_format if isinstance(backend, (TorchBackend, OnnxBackend)) else "mock",
    )
    logger.info(
        "Engine ready",
        extra={
            "model": resolved.name,
            "backend": type(backend).__name__,
            "tokenizer": type(tokenizer).__name__,
        },
    )
    return engine
