# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Streaming decode cursor.

Instead of waiting for the whole generation to finish, the cursor hands out
one decoded text fragment per pull. The user sees output appear token by
token instead of staring at a blank screen.

The cursor is one step ahead of its consumer. Building it runs the first
decode step right away (the "prime" step), so has_next() can answer without
doing any work. Every pull returns the fragment that's already computed and
then eagerly computes the next one.

Some properties worth knowing:

  - It's finite and not restartable. Once exhausted it stays exhausted;
    decoding again means building a new cursor.
  - Stopping early is fine. Just stop pulling (or call close()). There's no
    background thread, nothing to cancel, nothing to clean up beyond the
    token sequence the cursor owns.
  - Fragments come out untrimmed. Joining every fragment gives the same text
    as batch generation before its whitespace trim, including the fragment
    that completed a stop sequence.
  - If the backend fails, the pull that triggered the failing step raises
    InferenceFailure. Its `partial_text` includes every fragment decoded so
    far, even the one that pull would have returned. After that the cursor
    is exhausted.
"""

import logging
from collections.abc import Callable, Iterator
from typing import Optional

from logitloom.logging.logger import get_logger
from logitloom.serving.decoding.core import DecodeLoop, DecodeState

logger: logging.Logger = get_logger(__name__)


class StreamingDecodeCursor(Iterator[str]):
    """
    Pull-based, one-ahead iterator over a DecodeLoop's fragments.

    `on_complete` is called exactly once, with the loop, when decoding
    reaches EOS, the length limit, or the stop sequence. It is not called
    when the consumer abandons the cursor or the backend fails.
    """

    def __init__(
        self,
        loop: DecodeLoop,
        on_complete: Optional[Callable[[DecodeLoop], None]] = None,
    ) -> None:
        self._loop = loop
        self._on_complete = on_complete
        self._pending: Optional[str] = None
        self._closed = False
        self._completed = False
        self._advance()

    @property
    def loop(self) -> DecodeLoop:
        return self._loop

    @property
    def state(self) -> DecodeState:
        return self._loop.state

    def _advance(self) -> None:
        """Compute the next fragment, or mark the cursor exhausted."""
        self._pending = None
        try:
            self._pending = self._loop.step()
        except Exception:
            self._closed = True
            raise

        if self._pending is None:
            self._closed = True
            self._notify_complete()

    def _notify_complete(self) -> None:
        if self._completed or self._loop.state is DecodeState.FAILED:
            return
        if not self._loop.is_finished:
            return
        self._completed = True
        if self._on_complete is not None:
            self._on_complete(self._loop)

    def has_next(self) -> bool:
        return self._pending is not None

    def __iter__(self) -> "StreamingDecodeCursor":
        return self

    def __next__(self) -> str:
        if self._pending is None:
            raise StopIteration

        fragment = self._pending
        self._advance()
        return fragment

    def close(self) -> None:
        """Stop early. Later pulls raise StopIteration."""
        if self._pending is not None:
            logger.debug(
                "Stream abandoned by consumer",
                extra={"generated_tokens": len(self._loop.generated_ids)},
            )
        self._pending = None
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
