# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Token sampling strategies.

This module handles the "what token comes next?" decision. The model gives
us a logits vector (one raw score per vocabulary entry) and a strategy turns
it into a single token index. There are exactly four strategies:

  1. Greedy: always pick the highest logit. Ties go to the lowest index.
     Deterministic, no randomness at all.
  2. Temperature: divide logits by temperature, softmax, then draw one
     token from the full distribution.
  3. TopK: keep only the k highest logits, then temperature-sample
     among those.
  4. TopP (nucleus): softmax the full vocabulary, keep the smallest
     high-probability prefix whose mass reaches p, renormalize, and
     sample inside it.

The set is closed on purpose: `SamplingStrategy` is a plain union of four
dataclasses and `sample()` dispatches on which one it got. Each random
strategy owns its own torch.Generator, seeded at construction, so two
strategies built with the same seed replay the same choices given the
same logits. Nothing here touches the global torch RNG.

Categorical draws all work the same way: take one uniform r in [0, 1)
from the strategy's generator and return the first index whose running
cumulative probability reaches r. If rounding leaves the total a hair
below r we return the last index instead of failing.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Union

import torch

from logitloom.serving.exceptions import InvalidConfiguration


def _make_generator(seed: int) -> torch.Generator:
    """A private CPU generator; negative seeds get a non-reproducible one."""
    generator = torch.Generator(device="cpu")
    if seed >= 0:
        generator.manual_seed(seed)
    else:
        generator.seed()
    return generator


def _as_logits(logits: Union[torch.Tensor, Sequence[float]]) -> torch.Tensor:
    """
    Normalize whatever the backend handed us into a 1-D float64 CPU tensor.

    A 2-D input is treated as [positions, vocab] and we keep the last row,
    which is the position being predicted. Never modifies the caller's data:
    every later operation produces a new tensor.
    """
    tensor = torch.as_tensor(logits)
    if tensor.dim() > 1:
        tensor = tensor[-1]
    tensor = tensor.detach().to(device="cpu", dtype=torch.float64)
    if tensor.numel() == 0:
        raise ValueError("Cannot sample from an empty logits vector")
    return tensor


def _draw(probs: torch.Tensor, generator: torch.Generator) -> int:
    """Categorical draw over `probs` by walking the cumulative distribution."""
    r = torch.rand(1, generator=generator, dtype=torch.float64)
    cumulative = torch.cumsum(probs, dim=0)
    # left insertion point == first index with cumulative >= r
    index = int(torch.searchsorted(cumulative, r).item())
    return min(index, probs.numel() - 1)


def _check_temperature(temperature: float) -> None:
    if not temperature > 0:
        raise InvalidConfiguration(f"Temperature must be positive, got {temperature}")


@dataclass
class Greedy:
    """Argmax decoding."""

    @property
    def name(self) -> str:
        return "greedy"


@dataclass
class Temperature:
    """Softmax sampling over the full vocabulary at a given temperature."""

    temperature: float
    seed: int = -1
    generator: torch.Generator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        _check_temperature(self.temperature)
        self.generator = _make_generator(self.seed)

    @property
    def name(self) -> str:
        return f"temperature({self.temperature})"


@dataclass
class TopK:
    """Temperature sampling restricted to the k highest logits."""

    k: int
    temperature: float = 1.0
    seed: int = -1
    generator: torch.Generator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.k <= 0:
            raise InvalidConfiguration(f"K must be positive, got {self.k}")
        _check_temperature(self.temperature)
        self.generator = _make_generator(self.seed)

    @property
    def name(self) -> str:
        return f"top_k({self.k}, temp={self.temperature})"


@dataclass
class TopP:
    """Nucleus sampling: sample from the smallest prefix holding mass >= p."""

    p: float
    temperature: float = 1.0
    seed: int = -1
    generator: torch.Generator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not 0.0 < self.p <= 1.0:
            raise InvalidConfiguration(f"P must be in (0, 1], got {self.p}")
        _check_temperature(self.temperature)
        self.generator = _make_generator(self.seed)

    @property
    def name(self) -> str:
        return f"top_p({self.p}, temp={self.temperature})"


SamplingStrategy = Union[Greedy, Temperature, TopK, TopP]


def nucleus(probs: torch.Tensor, p: float) -> torch.Tensor:
    """
    Vocabulary indices of the nucleus for a probability vector.

    Indices come back in descending-probability order (ties broken by
    lower index first). The prefix is inclusive of the element whose
    addition first pushes the running sum to p or beyond, so the nucleus
    always holds at least mass p, and dropping its last element would
    leave it below p. If rounding keeps the total under p, the whole
    vocabulary is the nucleus.
    """
    sorted_probs, order = torch.sort(probs, descending=True, stable=True)
    cumulative = torch.cumsum(sorted_probs, dim=0)
    size = int((cumulative < p).sum().item()) + 1
    return order[: min(size, order.numel())]


def _sample_temperature(strategy: Temperature, logits: torch.Tensor) -> int:
    probs = torch.softmax(logits / strategy.temperature, dim=0)
    return _draw(probs, strategy.generator)


def _sample_top_k(strategy: TopK, logits: torch.Tensor) -> int:
    effective_k = min(strategy.k, logits.numel())
    values, order = torch.sort(logits, descending=True, stable=True)
    probs = torch.softmax(values[:effective_k] / strategy.temperature, dim=0)
    position = _draw(probs, strategy.generator)
    return int(order[position].item())


def _sample_top_p(strategy: TopP, logits: torch.Tensor) -> int:
    probs = torch.softmax(logits / strategy.temperature, dim=0)
    kept = nucleus(probs, strategy.p)
    kept_probs = probs[kept]
    kept_probs = kept_probs / kept_probs.sum()
    position = _draw(kept_probs, strategy.generator)
    return int(kept[position].item())


def sample(strategy: SamplingStrategy, logits: Union[torch.Tensor, Sequence[float]]) -> int:
    """
    Pick the next token index from a logits vector.

    The returned index is always inside [0, len(logits)). Greedy never
    consumes randomness; the other strategies advance their own generator
    by exactly one draw per call.

    Args:
        strategy: One of Greedy, Temperature, TopK, TopP.
        logits: Raw scores for the position being predicted, shape [vocab_size].

    Returns:
        The chosen vocabulary index.
    """
    scores = _as_logits(logits)

    if isinstance(strategy, Greedy):
        # torch.argmax returns the first maximal index
        return int(torch.argmax(scores).item())
    if isinstance(strategy, Temperature):
        return _sample_temperature(strategy, scores)
    if isinstance(strategy, TopK):
        return _sample_top_k(strategy, scores)
    if isinstance(strategy, TopP):
        return _sample_top_p(strategy, scores)

    raise TypeError(f"Unknown sampling strategy: {type(strategy).__name__}")
