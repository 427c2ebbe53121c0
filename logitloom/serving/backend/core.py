# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Forward-pass backends.

A backend is the opaque numeric part of the system: give it the token ids
so far plus an attention mask, get back one logits vector for the next
position. The decode loop doesn't know or care what's inside.

Three implementations ship here:

  - TorchBackend wraps any torch.nn.Module (in practice a TorchScript
    export) that maps [batch, seq] token ids to [batch, seq, vocab] logits.
  - OnnxBackend runs an exported .onnx model through onnxruntime.
  - MockBackend produces seeded pseudo-random logits, so the whole engine
    can run end-to-end on a machine that has no model at all.

Backends must fail loudly. If the forward pass blows up, or produces the
wrong shape, that surfaces as InferenceFailure rather than as garbage
logits flowing into the sampler.
"""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import onnxruntime as ort
import torch
import torch.nn as nn

from logitloom.logging.logger import get_logger
from logitloom.serving.exceptions import InferenceFailure

logger: logging.Logger = get_logger(__name__)


@runtime_checkable
class InferenceBackend(Protocol):
    """What the decode loop needs from a next-token predictor."""

    @property
    def vocab_size(self) -> int: ...

    @property
    def max_context_length(self) -> int: ...

    def forward(self, token_ids: Sequence[int], attention_mask: Sequence[int]) -> torch.Tensor: ...

    def close(self) -> None: ...


def resolve_device(device_str: str) -> torch.device:
    """
    Turn a device string into an actual torch device.

    "auto" picks CUDA if available, then Apple's MPS, otherwise CPU.
    """
    if device_str == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        if torch.backends.mps.is_available():
            return torch.device("mps")
        return torch.device("cpu")
    return torch.device(device_str)


def _extract_logits(output: object) -> torch.Tensor:
    """
    Pull the logits tensor out of whatever the model returned.

    Plain tensors are the common case for TorchScript exports. HF-style
    models return an object with `.logits`, and some models return a tuple
    with the logits first.
    """
    if isinstance(output, torch.Tensor):
        return output
    logits = getattr(output, "logits", None)
    if isinstance(logits, torch.Tensor):
        return logits
    if isinstance(output, (tuple, list)) and output and isinstance(output[0], torch.Tensor):
        return output[0]
    raise InferenceFailure(
        f"Model returned {type(output).__name__}, expected a logits tensor"
    )


class TorchBackend:
    """
    Runs a torch module as the forward pass.

    If `pass_attention_mask` is set, the mask is handed to the model as the
    second positional argument; otherwise the model only sees the ids (most
    causal LM exports don't take a mask when there's no padding).
    """

    def __init__(
        self,
        model: nn.Module,
        vocab_size: int,
        max_context_length: int,
        device: torch.device | None = None,
        pass_attention_mask: bool = False,
    ) -> None:
        self._model = model
        self._vocab_size = vocab_size
        self._max_context_length = max_context_length
        self._device = device or torch.device("cpu")
        self._pass_attention_mask = pass_attention_mask

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    @property
    def max_context_length(self) -> int:
        return self._max_context_length

    @property
    def device(self) -> torch.device:
        return self._device

    @torch.no_grad()
    def forward(self, token_ids: Sequence[int], attention_mask: Sequence[int]) -> torch.Tensor:
        """
        Run the model and return the logits for the last position.

        We wrap the ids in a [1, seq_len] tensor, feed them through the
        model, and keep only the final row of the [1, seq_len, vocab]
        output. Gradients are off; inference never needs them.
        """
        if len(token_ids) != len(attention_mask):
            raise InferenceFailure(
                f"Attention mask length {len(attention_mask)} does not match "
                f"{len(token_ids)} token ids"
            )

        input_ids = torch.tensor([list(token_ids)], dtype=torch.long, device=self._device)
        try:
            if self._pass_attention_mask:
                mask = torch.tensor([list(attention_mask)], dtype=torch.long, device=self._device)
                output = self._model(input_ids, mask)
            else:
                output = self._model(input_ids)
        except Exception as err:
            raise InferenceFailure(f"Forward pass failed: {err}") from err

        logits = _extract_logits(output)
        if logits.dim() == 3:
            logits = logits[0, -1, :]
        elif logits.dim() == 2:
            logits = logits[-1, :]
        return logits.float().cpu()

    def close(self) -> None:
        """Drop the module reference so its memory can be reclaimed."""
        self._model = None  # type: ignore[assignment]


# preferred first; anything not available in this onnxruntime build is skipped
_ONNX_GPU_PROVIDERS = ("CUDAExecutionProvider", "DmlExecutionProvider", "CoreMLExecutionProvider")
_ONNX_CPU_PROVIDER = "CPUExecutionProvider"


def onnx_providers(device_str: str) -> list[str]:
    """
    Pick onnxruntime execution providers for a device string.

    "cpu" always means CPU. Anything else ("cuda", "mps", "auto") tries the
    GPU providers this onnxruntime build has, with CPU as the last resort.
    """
    if device_str == "cpu":
        return [_ONNX_CPU_PROVIDER]
    available = set(ort.get_available_providers())
    chosen = [name for name in _ONNX_GPU_PROVIDERS if name in available]
    if not chosen and device_str != "auto":
        logger.warning(
            "No GPU execution provider in onnxruntime, running ONNX model on CPU",
            extra={"device": device_str},
        )
    return chosen + [_ONNX_CPU_PROVIDER]


class OnnxBackend:
    """
    Runs an exported ONNX causal LM through an onnxruntime session.

    The graph gets `input_ids` (or its first input, if nothing has that
    name) as int64 [1, seq]. `attention_mask` and `position_ids` are fed
    when the graph declares them. Any other input, such as a KV cache, is
    not supported and rejected at construction. The first output is the
    logits, [1, seq, vocab] or [1, vocab].
    """

    def __init__(
        self,
        session: "ort.InferenceSession",
        vocab_size: int,
        max_context_length: int,
    ) -> None:
        input_names = [node.name for node in session.get_inputs()]
        if not input_names:
            raise RuntimeError("ONNX model declares no inputs")

        self._ids_name = "input_ids" if "input_ids" in input_names else input_names[0]
        self._mask_name = "attention_mask" if "attention_mask" in input_names else None
        self._positions_name = "position_ids" if "position_ids" in input_names else None

        known = {self._ids_name, self._mask_name, self._positions_name}
        unsupported = [name for name in input_names if name not in known]
        if unsupported:
            raise RuntimeError(f"ONNX model needs unsupported inputs: {', '.join(unsupported)}")

        self._session = session
        self._logits_name = session.get_outputs()[0].name
        self._vocab_size = vocab_size
        self._max_context_length = max_context_length

    @classmethod
    def from_file(
        cls,
        path: Path,
        vocab_size: Optional[int],
        max_context_length: int,
        device: str = "cpu",
        fallback_vocab_size: Optional[int] = None,
    ) -> "OnnxBackend":
        """
        Open an .onnx file.

        The vocab size is `vocab_size` when given, else the last dimension of
        the logits output when it is fixed, else `fallback_vocab_size`.

        Raises:
            RuntimeError: onnxruntime can't load the file, or the vocab size
                can't be determined.
        """
        providers = onnx_providers(device)
        try:
            session = ort.InferenceSession(str(path), providers=providers)
        except Exception as err:
            raise RuntimeError(f"Cannot load ONNX model {path}: {err}") from err

        if vocab_size is None:
            last_dim = session.get_outputs()[0].shape[-1]
            vocab_size = last_dim if isinstance(last_dim, int) else fallback_vocab_size
        if vocab_size is None:
            raise RuntimeError(
                f"ONNX model {path} has a symbolic vocab dimension; set vocab_size in config.json"
            )

        logger.info(
            "ONNX model loaded",
            extra={
                "path": str(path),
                "providers": session.get_providers(),
                "vocab_size": vocab_size,
                "context_length": max_context_length,
            },
        )
        return cls(session, vocab_size=vocab_size, max_context_length=max_context_length)

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    @property
    def max_context_length(self) -> int:
        return self._max_context_length

    def forward(self, token_ids: Sequence[int], attention_mask: Sequence[int]) -> torch.Tensor:
        if len(token_ids) != len(attention_mask):
            raise InferenceFailure(
                f"Attention mask length {len(attention_mask)} does not match "
                f"{len(token_ids)} token ids"
            )

        feed = {self._ids_name: torch.tensor([list(token_ids)], dtype=torch.long).numpy()}
        if self._mask_name is not None:
            feed[self._mask_name] = torch.tensor([list(attention_mask)], dtype=torch.long).numpy()
        if self._positions_name is not None:
            feed[self._positions_name] = torch.arange(len(token_ids), dtype=torch.long).unsqueeze(0).numpy()

        try:
            (output,) = self._session.run([self._logits_name], feed)
        except Exception as err:
            raise InferenceFailure(f"ONNX forward pass failed: {err}") from err

        logits = torch.from_numpy(output)
        if logits.dim() == 3:
            logits = logits[0, -1, :]
        elif logits.dim() == 2:
            logits = logits[-1, :]
        return logits.float()

    def close(self) -> None:
        """Release the onnxruntime session."""
        self._session = None  # type: ignore[assignment]


class MockBackend:
    """
    Pseudo-random logits for running the engine without a model.

    Each call draws gaussian logits (scaled by 2) from a seeded generator,
    nudges the first 100 ids up so common tokens win more often, and after
    ten calls starts pushing the EOS logit up by 0.5 per call so that
    generations actually end on their own.
    """

    def __init__(
        self,
        vocab_size: int,
        max_context_length: int,
        seed: int = 0,
        eos_token_id: int = 2,
    ) -> None:
        if vocab_size <= 0:
            raise ValueError(f"vocab_size must be positive, got {vocab_size}")
        self._vocab_size = vocab_size
        self._max_context_length = max_context_length
        self._eos_token_id = eos_token_id
        self._seed = seed
        self._generator = torch.Generator(device="cpu")
        self._generator.manual_seed(seed)
        self._calls = 0

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    @property
    def max_context_length(self) -> int:
        return self._max_context_length

    @property
    def calls(self) -> int:
        return self._calls

    def forward(self, token_ids: Sequence[int], attention_mask: Sequence[int]) -> torch.Tensor:
        self._calls += 1

        logits = torch.randn(self._vocab_size, generator=self._generator) * 2.0
        logits[: min(100, self._vocab_size)] += 1.0

        if self._calls > 10 and 0 <= self._eos_token_id < self._vocab_size:
            logits[self._eos_token_id] += (self._calls - 10) * 0.5

        return logits

    def reset(self) -> None:
        """Start over: call counter and random stream both rewind."""
        self._calls = 0
        self._generator.manual_seed(self._seed)

    def close(self) -> None:
        logger.debug("Mock backend closed", extra={"calls": self._calls})
