# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Result types handed back by the inference engine.

These are plain dataclasses, no pydantic here, since these are runtime
data structures rather than config validation.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class GenerateResponse:
    """What comes back after a batch generation finishes."""

    text: str
    tokens_generated: int
    prompt_tokens: int
    total_time_ms: float
    tokens_per_second: float
    finish_reason: str = "length"
    strategy: str = "greedy"


@dataclass(frozen=True)
class ModelInfo:
    """Describes the loaded model, for `logitloom info` and logs."""

    name: str
    format: str
    vocab_size: int
    context_length: int
    backend: str
    tokenizer: str
