# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Generation parameters.

A GenerationConfig is built once per generation call and never mutated
afterwards. It carries everything the decode loop and the strategy
selector need to know:

  - how many tokens we're allowed to produce (max_new_tokens)
  - whether to sample at all (do_sample), and how (temperature, top_p, top_k)
  - an optional stop sequence checked against the decoded text
  - a seed; non-negative seeds make sampling reproducible

The defaults match the CLI defaults: nucleus sampling at p=0.9 with
temperature 1.0 and no fixed seed.
"""

from dataclasses import dataclass
from typing import Optional

from logitloom.config.schema import GenerationSettings
from logitloom.serving.exceptions import InvalidConfiguration


@dataclass(frozen=True)
class GenerationConfig:
    """Immutable per-call generation parameters."""

    max_new_tokens: int = 256
    temperature: float = 1.0
    top_p: float = 0.9
    top_k: int = 50
    stop_sequence: Optional[str] = None
    do_sample: bool = True
    seed: int = -1

    def __post_init__(self) -> None:
        if self.max_new_tokens <= 0:
            raise InvalidConfiguration(
                f"max_new_tokens must be positive, got {self.max_new_tokens}"
            )

    @property
    def is_seeded(self) -> bool:
        return self.seed >= 0

    @classmethod
    def from_settings(cls, settings: GenerationSettings, **overrides: object) -> "GenerationConfig":
        """
        Build a config from the YAML generation section.

        Keyword overrides win over the file; an override of None means
        "not given" and leaves the file value in place. That's exactly
        what argparse hands us for flags the user didn't pass.
        """
        values: dict[str, object] = {
            "max_new_tokens": settings.max_new_tokens,
            "temperature": settings.temperature,
            "top_p": settings.top_p,
            "top_k": settings.top_k,
            "stop_sequence": settings.stop_sequence,
            "do_sample": settings.do_sample,
            "seed": settings.seed,
        }
        for key, value in overrides.items():
            if key not in values:
                raise TypeError(f"Unknown generation parameter: {key}")
            if value is not None:
                values[key] = value
        return cls(**values)  # type: ignore[arg-type]
