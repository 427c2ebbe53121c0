# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Inference engine: the entry point callers actually use.

This module ties together the backend, the tokenizer, the decode loop and
the streaming cursor into one interface. When you call
`engine.generate("write a haiku", config)`, everything else happens
automatically: prompt encoding, strategy selection, the autoregressive
loop, and metrics bookkeeping.

The engine doesn't know or care about CLI arguments, hubs or file paths.
It takes prompts (text, or token ids if you've already encoded them) and
returns text. Loading a model is the loader's job.

Each generation call gets its own DecodeLoop, token sequence and RNG, so
the engine holds no per-request state between calls. A single engine is
still meant to be driven by one caller at a time.
"""

import logging
import time
from collections.abc import Sequence
from typing import Optional, Union

from logitloom.logging.logger import get_logger
from logitloom.serving.api.schema import GenerateResponse, ModelInfo
from logitloom.serving.backend.core import InferenceBackend
from logitloom.serving.decoding.core import DecodeLoop
from logitloom.serving.exceptions import EngineNotReady
from logitloom.serving.generation.core import GenerationConfig
from logitloom.serving.metrics.core import RequestMetrics, ServingMetrics
from logitloom.serving.streaming.core import StreamingDecodeCursor
from logitloom.tokenizer.core import Tokenizer

logger: logging.Logger = get_logger(__name__)

Prompt = Union[str, Sequence[int]]


class InferenceEngine:
    """
    High-level generation API.

    This is what the CLI talks to. Build one with a backend and a
    tokenizer (usually via `logitloom.serving.loader.core.load_engine`),
    then call generate(), generate_response() or generate_stream().

    An engine missing either dependency can still be constructed, but any
    generation call on it raises EngineNotReady before doing any work.
    """

    def __init__(
        self,
        backend: Optional[InferenceBackend] = None,
        tokenizer: Optional[Tokenizer] = None,
        model_name: str = "unknown",
        model_format: str = "unknown",
    ) -> None:
        self._backend = backend
        self._tokenizer = tokenizer
        self._model_name = model_name
        self._model_format = model_format
        self._metrics = ServingMetrics()

    @property
    def metrics(self) -> ServingMetrics:
        return self._metrics

    @property
    def is_ready(self) -> bool:
        return self._backend is not None and self._tokenizer is not None

    @property
    def tokenizer(self) -> Optional[Tokenizer]:
        return self._tokenizer

    @property
    def backend(self) -> Optional[InferenceBackend]:
        return self._backend

    def _require_ready(self) -> tuple[InferenceBackend, Tokenizer]:
        if self._backend is None:
            raise EngineNotReady("No backend loaded, cannot generate text")
        if self._tokenizer is None:
            raise EngineNotReady("No tokenizer loaded, cannot generate text")
        return self._backend, self._tokenizer

    def _prompt_ids(self, tokenizer: Tokenizer, prompt: Prompt) -> list[int]:
        if isinstance(prompt, str):
            return tokenizer.encode(prompt)
        return [int(token_id) for token_id in prompt]

    def _new_loop(self, prompt: Prompt, config: GenerationConfig) -> DecodeLoop:
        backend, tokenizer = self._require_ready()
        prompt_ids = self._prompt_ids(tokenizer, prompt)
        return DecodeLoop(backend, tokenizer, prompt_ids, config)

    def generate(self, prompt: Prompt, config: GenerationConfig) -> str:
        """
        Generate text from a prompt and return it, whitespace-trimmed.

        Blocks until the loop hits EOS, the length limit, or the stop
        sequence.

        Raises:
            EngineNotReady: No backend or tokenizer.
            InvalidConfiguration: The config's sampling parameters are out of range.
            InferenceFailure: The backend failed mid-generation; the text
                decoded so far is on the exception's `partial_text`.
        """
        return self.generate_response(prompt, config).text

    def generate_response(self, prompt: Prompt, config: GenerationConfig) -> GenerateResponse:
        """Same as generate(), but with token counts, timing and finish reason."""
        loop = self._new_loop(prompt, config)

        start = time.monotonic()
        first_token_ms = 0.0
        while not loop.is_finished:
            fragment = loop.step()
            if fragment is not None and not first_token_ms:
                first_token_ms = (time.monotonic() - start) * 1000.0

        result = loop.result()
        elapsed_ms = (time.monotonic() - start) * 1000.0
        tps = (len(result.generated_ids) / elapsed_ms * 1000.0) if elapsed_ms > 0 else 0.0

        self._metrics.record(
            RequestMetrics(
                prompt_tokens=result.prompt_tokens,
                generated_tokens=len(result.generated_ids),
                total_time_ms=elapsed_ms,
                first_token_ms=first_token_ms,
                tokens_per_second=tps,
                peak_memory_mb=ServingMetrics.get_gpu_memory_mb(),
                finish_reason=result.finish_reason,
                strategy=result.strategy_name,
            )
        )

        return GenerateResponse(
            text=result.text,
            tokens_generated=len(result.generated_ids),
            prompt_tokens=result.prompt_tokens,
            total_time_ms=round(elapsed_ms, 2),
            tokens_per_second=round(tps, 2),
            finish_reason=result.finish_reason,
            strategy=result.strategy_name,
        )

    def generate_stream(self, prompt: Prompt, config: GenerationConfig) -> StreamingDecodeCursor:
        """
        Generate lazily, one text fragment per pull.

        The returned cursor has already run its first decode step, so a
        backend failure on that very first step surfaces here rather than
        on the first pull. Fragments are not trimmed.
        """
        loop = self._new_loop(prompt, config)
        start = time.monotonic()

        def _record(finished: DecodeLoop) -> None:
            elapsed_ms = (time.monotonic() - start) * 1000.0
            generated = len(finished.generated_ids)
            self._metrics.record(
                RequestMetrics(
                    prompt_tokens=finished.prompt_length,
                    generated_tokens=generated,
                    total_time_ms=elapsed_ms,
                    tokens_per_second=(generated / elapsed_ms * 1000.0) if elapsed_ms > 0 else 0.0,
                    peak_memory_mb=ServingMetrics.get_gpu_memory_mb(),
                    finish_reason=finished.state.value,
                    strategy=finished.strategy.name,
                    streamed=True,
                )
            )

        return StreamingDecodeCursor(loop, on_complete=_record)

    def model_info(self) -> Optional[ModelInfo]:
        """Describe the loaded model, or None if the engine isn't ready."""
        if not self.is_ready:
            return None
        backend, tokenizer = self._require_ready()
        return ModelInfo(
            name=self._model_name,
            format=self._model_format,
            vocab_size=backend.vocab_size,
            context_length=backend.max_context_length,
            backend=type(backend).__name__,
            tokenizer=type(tokenizer).__name__,
        )

    def close(self) -> None:
        """Release the backend. The engine is not ready afterwards."""
        if self._backend is not None:
            self._backend.close()
        self._backend = None
        self._tokenizer = None
        logger.info("Engine closed", extra={"model": self._model_name})
