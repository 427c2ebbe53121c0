# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions raised by the generation runtime.

All of these reach the caller of the generation entry point unchanged.
Nothing in the serving layer retries or swallows them; retry policy, if
anyone wants one, belongs to the caller.
"""


class GenerationError(Exception):
    """Base for all generation runtime errors."""


class InvalidConfiguration(GenerationError):
    """
    A generation parameter is out of range.

    Raised when a sampling strategy is constructed (temperature <= 0,
    k <= 0, p outside (0, 1]) or when a GenerationConfig asks for a
    non-positive token budget. Never raised in the middle of decoding.
    """


class EngineNotReady(GenerationError):
    """A generation call was made before a backend and tokenizer were loaded."""


class InferenceFailure(GenerationError):
    """
    The forward-pass backend failed during a decode step.

    Fatal to the current generation call. `partial_text` holds everything
    decoded before the failing step, so callers can still show the user
    what the model produced.
    """

    def __init__(self, message: str, partial_text: str = "") -> None:
        super().__init__(message)
        self.partial_text = partial_text
