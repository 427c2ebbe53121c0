# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the engine loader.

We test:
  - TorchScript weights become a TorchBackend that actually generates
  - ONNX weights become an OnnxBackend
  - anything else falls back to the mock backend
  - tokenizer.json is picked up, and its absence falls back to SimpleTokenizer
"""

from pathlib import Path

import pytest
import torch
import torch.nn as nn

from conftest import write_echo_onnx
from logitloom.hub.core import ModelHub
from logitloom.hub.resolver import ModelResolver, ResolvedModel
from logitloom.serving.backend.core import MockBackend, OnnxBackend, TorchBackend
from logitloom.serving.generation.core import GenerationConfig
from logitloom.serving.loader.core import DEFAULT_MOCK_VOCAB_SIZE, load_engine
from logitloom.tokenizer.core import HFTokenizer, SimpleTokenizer


class ScriptableLM(nn.Module):
    def __init__(self, vocab_size: int) -> None:
        super().__init__()
        self.embed = nn.Embedding(vocab_size, 8)
        self.head = nn.Linear(8, vocab_size)

    def forward(self, input_ids: torch.Tensor) -> torch.Tensor:
        return self.head(self.embed(input_ids))


def _resolved(path: Path, fmt: str, tokenizer_path: Path | None = None, **kwargs: object) -> ResolvedModel:
    return ResolvedModel(
        name="local-test",
        model_path=path,
        tokenizer_path=tokenizer_path,
        model_format=fmt,
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture()
def torchscript_file(tmp_path: Path) -> Path:
    torch.manual_seed(0)
    path = tmp_path / "model.pt"
    torch.jit.script(ScriptableLM(6)).save(str(path))
    return path


class TestTorchScriptLoading:
    def test_builds_torch_backend(self, torchscript_file: Path, hf_tokenizer_file: Path) -> None:
        engine = load_engine(
            _resolved(torchscript_file, "torchscript", hf_tokenizer_file, context_length=64)
        )

        assert isinstance(engine.backend, TorchBackend)
        assert isinstance(engine.tokenizer, HFTokenizer)
        assert engine.backend.vocab_size == 6
        assert engine.backend.max_context_length == 64

    def test_generates_end_to_end(self, torchscript_file: Path, hf_tokenizer_file: Path) -> None:
        engine = load_engine(_resolved(torchscript_file, "torchscript", hf_tokenizer_file))
        response = engine.generate_response("hello world", GenerationConfig(max_new_tokens=4, do_sample=False))

        assert response.tokens_generated <= 4
        assert response.finish_reason in ("eos", "length")

    def test_context_length_override(self, torchscript_file: Path, hf_tokenizer_file: Path) -> None:
        engine = load_engine(
            _resolved(torchscript_file, "torchscript", hf_tokenizer_file, context_length=2048),
            context_length=16,
        )
        assert engine.backend.max_context_length == 16  # type: ignore[union-attr]

    def test_model_info_reports_format(self, torchscript_file: Path, hf_tokenizer_file: Path) -> None:
        engine = load_engine(_resolved(torchscript_file, "torchscript", hf_tokenizer_file))
        info = engine.model_info()
        assert info is not None
        assert info.format == "torchscript"
        assert info.backend == "TorchBackend"

    def test_corrupt_torchscript_raises(self, tmp_path: Path) -> None:
        bad = tmp_path / "model.pt"
        bad.write_bytes(b"not a zip archive")
        with pytest.raises(RuntimeError):
            load_engine(_resolved(bad, "torchscript"))


class TestOnnxLoading:
    def test_builds_onnx_backend(self, onnx_echo_file: Path) -> None:
        engine = load_engine(_resolved(onnx_echo_file, "onnx", context_length=64))

        assert isinstance(engine.backend, OnnxBackend)
        assert engine.backend.vocab_size == 10
        assert engine.backend.max_context_length == 64
        assert engine.model_info().format == "onnx"  # type: ignore[union-attr]

    def test_generates_end_to_end(self, tmp_path: Path, hf_tokenizer_file: Path) -> None:
        model = write_echo_onnx(tmp_path / "model.onnx", vocab_size=6)
        engine = load_engine(_resolved(model, "onnx", hf_tokenizer_file))

        response = engine.generate_response("hello world", GenerationConfig(max_new_tokens=3, do_sample=False))
        assert response.tokens_generated == 3
        assert response.finish_reason == "length"
        assert response.text.count("world") == 3

    def test_resolved_directory_runs_onnx(self, tmp_path: Path) -> None:
        model_dir = tmp_path / "onnx-model"
        model_dir.mkdir()
        write_echo_onnx(model_dir / "model.onnx", vocab_size=10)
        (model_dir / "config.json").write_text('{"vocab_size": 10}', encoding="utf-8")

        resolved = ModelResolver(ModelHub(cache_dir=tmp_path / "cache")).resolve(str(model_dir))
        assert isinstance(load_engine(resolved).backend, OnnxBackend)

    def test_corrupt_onnx_raises(self, tmp_path: Path) -> None:
        bad = tmp_path / "model.onnx"
        bad.write_bytes(b"\x08\x07garbage")
        with pytest.raises(RuntimeError):
            load_engine(_resolved(bad, "onnx"))


class TestMockFallback:
    def test_other_formats_use_mock(self, tmp_path: Path, hf_tokenizer_file: Path) -> None:
        weights = tmp_path / "model.safetensors"
        weights.write_bytes(b"\x00" * 16)

        engine = load_engine(_resolved(weights, "safetensors", hf_tokenizer_file))
        assert isinstance(engine.backend, MockBackend)
        assert engine.backend.vocab_size == engine.tokenizer.vocab_size  # type: ignore[union-attr]
        assert engine.model_info().format == "mock"  # type: ignore[union-attr]

    def test_directory_without_weights_uses_mock(self, tmp_path: Path) -> None:
        engine = load_engine(_resolved(tmp_path, "unknown"))
        assert isinstance(engine.backend, MockBackend)
        assert isinstance(engine.tokenizer, SimpleTokenizer)
        assert engine.backend.vocab_size == DEFAULT_MOCK_VOCAB_SIZE

    def test_config_vocab_size_wins(self, tmp_path: Path) -> None:
        engine = load_engine(_resolved(tmp_path, "unknown", vocab_size=300))
        assert engine.backend.vocab_size == 300  # type: ignore[union-attr]

    def test_mock_engine_generates(self, tmp_path: Path) -> None:
        engine = load_engine(_resolved(tmp_path, "unknown", context_length=64))
        response = engine.generate_response("hello there", GenerationConfig(max_new_tokens=8, seed=1))
        assert response.tokens_generated <= 8


class TestTokenizerSelection:
    def test_explicit_tokenizer_path_wins(self, tmp_path: Path, hf_tokenizer_file: Path) -> None:
        engine = load_engine(_resolved(tmp_path, "unknown"), tokenizer_path=hf_tokenizer_file)
        assert isinstance(engine.tokenizer, HFTokenizer)

    def test_missing_explicit_tokenizer_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_engine(_resolved(tmp_path, "unknown"), tokenizer_path=tmp_path / "nope.json")

    def test_eos_from_model_config(self, tmp_path: Path, hf_tokenizer_file: Path) -> None:
        engine = load_engine(_resolved(tmp_path, "unknown", hf_tokenizer_file, eos_token_id=5))
        assert engine.tokenizer.eos_token_id == 5  # type: ignore[union-attr]
