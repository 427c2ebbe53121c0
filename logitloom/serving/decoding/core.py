# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
The autoregressive decode loop.

One DecodeLoop drives one generation call. It owns the growing token-id
sequence, the decoded-text buffer and the sampling strategy, and moves
through a small state machine:

    INIT -> DECODING -> EOS_REACHED
                     -> MAX_LENGTH_REACHED
                     -> STOP_SEQUENCE_MATCHED
                     -> FAILED (backend raised)

Each call to step() runs one full cycle:

  1. Stop with MAX_LENGTH_REACHED if the token budget is spent or the
     sequence already fills max_length. No forward pass happens.
  2. Build an all-ones attention mask for the current sequence.
  3. Run the backend's forward pass to get the next-position logits.
  4. Pick a token with the sampling strategy.
  5. If it's EOS, stop with EOS_REACHED. The EOS token is neither
     decoded nor appended.
  6. Decode the token to text and append it to the text buffer.
  7. If the buffer now contains the stop sequence, stop with
     STOP_SEQUENCE_MATCHED. The triggering token's text stays in the output.
  8. Append the token to the sequence and carry on.

where max_length = min(prompt_length + max_new_tokens, backend context).

The stop check is a plain substring test on the accumulated text, not on
token ids. A stop sequence that the tokenizer happens to split across
tokens still matches, and one that appears inside a longer word matches
too. That's the long-standing behaviour and callers rely on it.

Not thread-safe: one loop, one caller.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Union

import torch

from logitloom.logging.logger import get_logger
from logitloom.serving.backend.core import InferenceBackend
from logitloom.serving.exceptions import InferenceFailure
from logitloom.serving.generation.core import GenerationConfig
from logitloom.serving.sampling.core import SamplingStrategy, sample
from logitloom.serving.sampling.selector import select_strategy
from logitloom.tokenizer.core import Tokenizer

logger: logging.Logger = get_logger(__name__)


class DecodeState(str, Enum):
    """Where a decode loop is in its lifecycle."""

    INIT = "init"
    DECODING = "decoding"
    EOS_REACHED = "eos"
    MAX_LENGTH_REACHED = "length"
    STOP_SEQUENCE_MATCHED = "stop_sequence"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (DecodeState.INIT, DecodeState.DECODING)


@dataclass(frozen=True)
class DecodeResult:
    """What a finished batch decode hands back."""

    text: str
    state: DecodeState
    generated_ids: tuple[int, ...]
    prompt_tokens: int
    strategy_name: str

    @property
    def finish_reason(self) -> str:
        return self.state.value


class DecodeLoop:
    """
    State machine for a single generation call.

    Construction is the INIT step: it computes max_length, builds the
    sampling strategy from the config, and leaves the loop in DECODING.
    Call step() repeatedly, or run() to go straight to a terminal state.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        tokenizer: Tokenizer,
        prompt_ids: Sequence[int],
        config: GenerationConfig,
    ) -> None:
        self._state = DecodeState.INIT
        self._backend = backend
        self._tokenizer = tokenizer
        self._config = config

        self._token_ids: list[int] = [int(token_id) for token_id in prompt_ids]
        self._prompt_length = len(self._token_ids)
        self._generated_ids: list[int] = []
        self._fragments: list[str] = []
        self._text = ""
        self._steps = 0

        self._max_length = min(
            self._prompt_length + config.max_new_tokens,
            backend.max_context_length,
        )
        self._eos_token_id = tokenizer.eos_token_id
        self._strategy: SamplingStrategy = select_strategy(config)

        logger.debug(
            "Decode loop initialized",
            extra={
                "strategy": self._strategy.name,
                "prompt_tokens": self._prompt_length,
                "max_length": self._max_length,
            },
        )
        self._state = DecodeState.DECODING

    @property
    def state(self) -> DecodeState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._state.is_terminal

    @property
    def strategy(self) -> SamplingStrategy:
        return self._strategy

    @property
    def max_length(self) -> int:
        return self._max_length

    @property
    def prompt_length(self) -> int:
        return self._prompt_length

    @property
    def token_ids(self) -> tuple[int, ...]:
        """Prompt plus accepted continuation, as a read-only snapshot."""
        return tuple(self._token_ids)

    @property
    def generated_ids(self) -> tuple[int, ...]:
        """Every token whose text made it into the output."""
        return tuple(self._generated_ids)

    @property
    def fragments(self) -> tuple[str, ...]:
        return tuple(self._fragments)

    @property
    def text(self) -> str:
        """The raw (untrimmed) decoded text so far."""
        return self._text

    def _finish(self, state: DecodeState) -> None:
        self._state = state
        logger.debug(
            "Decode loop finished",
            extra={
                "state": state.value,
                "generated_tokens": len(self._generated_ids),
                "strategy": self._strategy.name,
            },
        )

    def _forward(self) -> Union[torch.Tensor, Sequence[float]]:
        attention_mask = [1] * len(self._token_ids)
        try:
            logits = self._backend.forward(list(self._token_ids), attention_mask)
        except InferenceFailure as err:
            self._state = DecodeState.FAILED
            err.partial_text = self._text
            raise
        except Exception as err:
            self._state = DecodeState.FAILED
            raise InferenceFailure(
                f"Backend forward pass failed: {err}", partial_text=self._text
            ) from err

        vocab_size = self._backend.vocab_size
        length = logits.shape[-1] if isinstance(logits, torch.Tensor) else len(logits)
        if length != vocab_size:
            self._state = DecodeState.FAILED
            raise InferenceFailure(
                f"Backend returned {length} logits, expected vocab size {vocab_size}",
                partial_text=self._text,
            )
        return logits

    def step(self) -> str | None:
        """
        Run one decode cycle.

        Returns the decoded text fragment of the accepted token, or None
        once the loop has reached a terminal state. A step that matches the
        stop sequence still returns its fragment; the following call
        returns None.

        Raises:
            InferenceFailure: The backend failed. The loop is FAILED afterwards
                and every later step() returns None.
        """
        if self.is_finished:
            return None

        if self._steps >= self._config.max_new_tokens or len(self._token_ids) >= self._max_length:
            self._finish(DecodeState.MAX_LENGTH_REACHED)
            return None

        logits = self._forward()
        token_id = sample(self._strategy, logits)

        if token_id == self._eos_token_id:
            self._finish(DecodeState.EOS_REACHED)
            return None

        fragment = self._tokenizer.decode(token_id)
        self._text += fragment
        self._fragments.append(fragment)
        self._generated_ids.append(token_id)

        stop_sequence = self._config.stop_sequence
        if stop_sequence and stop_sequence in self._text:
            self._finish(DecodeState.STOP_SEQUENCE_MATCHED)
            return fragment

        self._token_ids.append(token_id)
        self._steps += 1
        return fragment

    def run(self) -> DecodeResult:
        """
        Drive the loop to a terminal state and return the trimmed text.

        Raises:
            InferenceFailure: The backend failed; `partial_text` holds what
                was decoded before the failure.
        """
        while not self.is_finished:
            self.step()
        return self.result()

    def result(self) -> DecodeResult:
        """Snapshot of a finished loop. Batch output is whitespace-trimmed."""
        if not self.is_finished:
            raise RuntimeError(f"Decode loop is still {self._state.value}")

        return DecodeResult(
            text=self._text.strip(),
            state=self._state,
            generated_ids=tuple(self._generated_ids),
            prompt_tokens=self._prompt_length,
            strategy_name=self._strategy.name,
        )
