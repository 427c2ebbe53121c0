# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tokenizers: the text <-> token id boundary.

The decode loop only ever asks a tokenizer two things: "what's the EOS id?"
and "what text does this single id decode to?". The engine additionally
encodes the prompt once at the start of a call. Everything else (vocab
files, normalization, byte-level tricks) is the tokenizer's business.

Two implementations:

  - HFTokenizer wraps a HuggingFace `tokenizers` tokenizer loaded from
    tokenizer.json. This is what real models use.
  - SimpleTokenizer is a toy word-level tokenizer. It exists so the engine
    runs without any tokenizer files (paired with the mock backend). Not
    suitable for real models.
"""

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from tokenizers import Tokenizer as _HFTokenizerImpl

from logitloom.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)

# checked in order when the caller doesn't say which token ends a sequence
_EOS_CANDIDATES = ("</s>", "<|endoftext|>", "<|end_of_text|>", "<eos>", "<|eot_id|>", "[SEP]")
_PAD_CANDIDATES = ("<pad>", "[PAD]", "<|pad|>")


@runtime_checkable
class Tokenizer(Protocol):
    """The subset of tokenizer behaviour the engine relies on."""

    @property
    def vocab_size(self) -> int: ...

    @property
    def eos_token_id(self) -> int: ...

    @property
    def pad_token_id(self) -> int: ...

    def encode(self, text: str) -> list[int]: ...

    def decode(self, token_id: int) -> str: ...

    def decode_ids(self, token_ids: Sequence[int]) -> str: ...


class HFTokenizer:
    """
    Adapter around a HuggingFace `tokenizers.Tokenizer`.

    EOS/PAD ids can be given explicitly (usually from the model's
    config.json). When they aren't, we look for the usual special token
    spellings in the vocabulary; EOS falls back to 2 and PAD to 0, which is
    what most sentencepiece-style vocabularies use.
    """

    def __init__(
        self,
        tokenizer: _HFTokenizerImpl,
        eos_token_id: Optional[int] = None,
        pad_token_id: Optional[int] = None,
    ) -> None:
        self._tokenizer = tokenizer
        self._eos_token_id = (
            eos_token_id if eos_token_id is not None else self._lookup(_EOS_CANDIDATES, 2)
        )
        self._pad_token_id = (
            pad_token_id if pad_token_id is not None else self._lookup(_PAD_CANDIDATES, 0)
        )

    @classmethod
    def from_file(
        cls,
        path: Path,
        eos_token_id: Optional[int] = None,
        pad_token_id: Optional[int] = None,
    ) -> "HFTokenizer":
        """Load tokenizer.json (or a directory containing one)."""
        if path.is_dir():
            path = path / "tokenizer.json"
        if not path.is_file():
            raise FileNotFoundError(f"Tokenizer file not found: {path}")

        tokenizer = _HFTokenizerImpl.from_file(str(path))
        logger.info("Tokenizer loaded", extra={"path": str(path)})
        return cls(tokenizer, eos_token_id=eos_token_id, pad_token_id=pad_token_id)

    def _lookup(self, candidates: Sequence[str], default: int) -> int:
        for token in candidates:
            token_id = self._tokenizer.token_to_id(token)
            if token_id is not None:
                return token_id
        return default

    @property
    def vocab_size(self) -> int:
        return self._tokenizer.get_vocab_size(with_added_tokens=True)

    @property
    def eos_token_id(self) -> int:
        return self._eos_token_id

    @property
    def pad_token_id(self) -> int:
        return self._pad_token_id

    def encode(self, text: str) -> list[int]:
        return list(self._tokenizer.encode(text).ids)

    def decode(self, token_id: int) -> str:
        return self._tokenizer.decode([token_id], skip_special_tokens=False)

    def decode_ids(self, token_ids: Sequence[int]) -> str:
        return self._tokenizer.decode(list(token_ids))


class SimpleTokenizer:
    """
    Word-level tokenizer that grows its vocabulary as it encodes.

    Special tokens get the first four ids: <pad>=0, <unk>=1, <eos>=2,
    <bos>=3. Encoding lowercases, splits on whitespace and keeps only
    alphanumerics of each word; unseen words get the next free id. Single
    word tokens decode with a leading space so that per-token decoding
    concatenates into readable text.
    """

    PAD = "<pad>"
    UNK = "<unk>"
    EOS = "<eos>"
    BOS = "<bos>"

    _NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

    def __init__(self) -> None:
        self._vocab: dict[str, int] = {}
        self._reverse: dict[int, str] = {}
        self._pad_token_id = self._add(self.PAD)
        self._unk_token_id = self._add(self.UNK)
        self._eos_token_id = self._add(self.EOS)
        self._add(self.BOS)

    def _add(self, token: str) -> int:
        existing = self._vocab.get(token)
        if existing is not None:
            return existing
        token_id = len(self._vocab)
        self._vocab[token] = token_id
        self._reverse[token_id] = token
        return token_id

    @property
    def vocab_size(self) -> int:
        return len(self._vocab)

    @property
    def eos_token_id(self) -> int:
        return self._eos_token_id

    @property
    def pad_token_id(self) -> int:
        return self._pad_token_id

    def encode(self, text: str) -> list[int]:
        ids: list[int] = []
        for word in text.lower().split():
            cleaned = self._NON_ALNUM.sub("", word)
            if cleaned:
                ids.append(self._add(cleaned))
        return ids

    def _is_special(self, token: str) -> bool:
        return token in (self.PAD, self.UNK, self.EOS, self.BOS)

    def decode(self, token_id: int) -> str:
        token = self._reverse.get(token_id, self.UNK)
        if self._is_special(token):
            return token
        return " " + token

    def decode_ids(self, token_ids: Sequence[int]) -> str:
        return " ".join(self._reverse.get(token_id, self.UNK) for token_id in token_ids)
