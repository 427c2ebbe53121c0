# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Strategy selection.

Turns a GenerationConfig into exactly one sampling strategy. The rules are
checked in a fixed order and the first match wins:

  1. Sampling disabled, or temperature below 0.01 -> Greedy
  2. 0 < top_p < 1                                  -> TopP
  3. 0 < top_k < TOP_K_DISABLED                     -> TopK
  4. otherwise                                      -> Temperature

So when both top_p and top_k are "on", top_p wins. Existing configs and
scripts depend on this ordering; don't rearrange it.
"""

from logitloom.serving.generation.core import GenerationConfig
from logitloom.serving.sampling.core import (
    Greedy,
    SamplingStrategy,
    Temperature,
    TopK,
    TopP,
)

GREEDY_TEMPERATURE_THRESHOLD = 0.01

# top_k at or above this value means "no top-k cutoff"
TOP_K_DISABLED = 2**31 - 1


def select_strategy(config: GenerationConfig) -> SamplingStrategy:
    """Build the sampling strategy for one generation call."""
    if not config.do_sample or config.temperature < GREEDY_TEMPERATURE_THRESHOLD:
        return Greedy()

    if 0.0 < config.top_p < 1.0:
        return TopP(p=config.top_p, temperature=config.temperature, seed=config.seed)

    if 0 < config.top_k < TOP_K_DISABLED:
        return TopK(k=config.top_k, temperature=config.temperature, seed=config.seed)

    return Temperature(temperature=config.temperature, seed=config.seed)
