# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for logitloom tests.

Fixtures here are available to every test file automatically. The scripted
backend and tokenizer replay fixed token sequences, so decode loop tests
can say exactly which token comes out at which step.
"""

import textwrap
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

import onnx
import pytest
import torch
from onnx import TensorProto, helper

EOS_ID = 0

# id -> text; decode() returns exactly these strings
VOCAB: dict[int, str] = {
    0: "<eos>",
    1: "<unk>",
    2: " The",
    3: " cat",
    4: " sat",
    5: " END",
    6: " on",
    7: " mat",
    8: " E",
    9: "ND",
}


class ScriptedTokenizer:
    """Fixed ten-token vocabulary; words the vocabulary lacks encode to <unk>."""

    def __init__(self, vocab: Optional[dict[int, str]] = None, eos_token_id: int = EOS_ID) -> None:
        self._vocab = dict(vocab or VOCAB)
        self._eos_token_id = eos_token_id
        self.decoded: list[int] = []

    @property
    def vocab_size(self) -> int:
        return len(self._vocab)

    @property
    def eos_token_id(self) -> int:
        return self._eos_token_id

    @property
    def pad_token_id(self) -> int:
        return 1

    def encode(self, text: str) -> list[int]:
        reverse = {value.strip(): key for key, value in self._vocab.items()}
        return [reverse.get(word, 1) for word in text.split()]

    def decode(self, token_id: int) -> str:
        self.decoded.append(token_id)
        return self._vocab.get(token_id, "<unk>")

    def decode_ids(self, token_ids: Sequence[int]) -> str:
        return "".join(self._vocab.get(token_id, "<unk>") for token_id in token_ids)


class ScriptedBackend:
    """
    Returns logits that make greedy sampling pick `script[n]` on call n.

    Once the script runs out it keeps emitting `fallback_id`. If `fail_on_call`
    is set, that call (1-based) raises RuntimeError instead.
    """

    def __init__(
        self,
        script: Sequence[int],
        vocab_size: int = len(VOCAB),
        max_context_length: int = 1024,
        fallback_id: int = EOS_ID,
        fail_on_call: Optional[int] = None,
    ) -> None:
        self._script = list(script)
        self._vocab_size = vocab_size
        self._max_context_length = max_context_length
        self._fallback_id = fallback_id
        self._fail_on_call = fail_on_call
        self.calls: list[tuple[list[int], list[int]]] = []
        self.closed = False

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    @property
    def max_context_length(self) -> int:
        return self._max_context_length

    def forward(self, token_ids: Sequence[int], attention_mask: Sequence[int]) -> torch.Tensor:
        self.calls.append((list(token_ids), list(attention_mask)))
        call_number = len(self.calls)
        if self._fail_on_call is not None and call_number == self._fail_on_call:
            raise RuntimeError("device lost")

        index = call_number - 1
        target = self._script[index] if index < len(self._script) else self._fallback_id
        logits = torch.zeros(self._vocab_size)
        logits[target] = 10.0
        return logits

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def tokenizer() -> ScriptedTokenizer:
    return ScriptedTokenizer()


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """
    Create a minimal valid config YAML file in a temp directory.

    This is the smallest config that passes schema validation.
    Tests that need specific config values should write their own files.
    """
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "logitloom-test"
          log_level: "DEBUG"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def full_config_file(tmp_path: Path) -> Path:
    """A config that sets every section."""
    config_content = textwrap.dedent(f"""\
        global:
          config_version: "1.0.0"
          log_level: "WARNING"
        model:
          source: "acme/tiny-model"
          device: "cpu"
          context_length: 512
        generation:
          max_new_tokens: 32
          temperature: 0.8
          top_p: 0.95
          top_k: 40
          stop_sequence: "###"
          seed: 7
          stream: true
        hub:
          cache_dir: "{tmp_path / 'cache'}"
          endpoint: "https://hub.example.test"
          timeout_seconds: 5
          token_env: "LOGITLOOM_TEST_TOKEN"
    """)
    config_file = tmp_path / "full_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """A file that's valid YAML but fails schema validation (missing required field)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "logitloom-test"
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file


WORD_VOCAB = {"<pad>": 0, "<unk>": 1, "</s>": 2, "hello": 3, "world": 4, "again": 5}


@pytest.fixture()
def hf_tokenizer_file(tmp_path: Path) -> Path:
    """A word-level tokenizer.json built with the `tokenizers` library."""
    from tokenizers import Tokenizer, models, pre_tokenizers

    tokenizer = Tokenizer(models.WordLevel(vocab=WORD_VOCAB, unk_token="<unk>"))
    tokenizer.pre_tokenizer = pre_tokenizers.Whitespace()

    path = tmp_path / "tok" / "tokenizer.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    tokenizer.save(str(path))
    return path


def write_echo_onnx(path: Path, vocab_size: int = 10, with_mask: bool = True) -> Path:
    """
    Save a tiny ONNX causal "LM" whose logits at each position are 10.0 on
    that position's own input id and 0 elsewhere, so greedy decoding keeps
    repeating the last token. With a mask input, masked positions get all
    zero logits.
    """
    table = [10.0 if row == col else 0.0 for row in range(vocab_size) for col in range(vocab_size)]
    initializers = [helper.make_tensor("table", TensorProto.FLOAT, [vocab_size, vocab_size], table)]
    inputs = [helper.make_tensor_value_info("input_ids", TensorProto.INT64, [1, "seq"])]
    nodes = [helper.make_node("Gather", ["table", "input_ids"], ["gathered"], axis=0)]

    if with_mask:
        inputs.append(helper.make_tensor_value_info("attention_mask", TensorProto.INT64, [1, "seq"]))
        initializers.append(helper.make_tensor("axes", TensorProto.INT64, [1], [2]))
        nodes += [
            helper.make_node("Cast", ["attention_mask"], ["mask_f"], to=TensorProto.FLOAT),
            helper.make_node("Unsqueeze", ["mask_f", "axes"], ["mask_3d"]),
            helper.make_node("Mul", ["gathered", "mask_3d"], ["logits"]),
        ]
    else:
        nodes.append(helper.make_node("Identity", ["gathered"], ["logits"]))

    graph = helper.make_graph(
        nodes,
        "echo",
        inputs,
        [helper.make_tensor_value_info("logits", TensorProto.FLOAT, [1, "seq", vocab_size])],
        initializer=initializers,
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.save(model, str(path))
    return path


@pytest.fixture()
def onnx_echo_file(tmp_path: Path) -> Path:
    """An echo model over the ten-token scripted vocabulary."""
    return write_echo_onnx(tmp_path / "model.onnx", vocab_size=len(VOCAB))
