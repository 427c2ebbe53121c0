# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
logitloom: text generation over an opaque next-token predictor.

The interesting part lives in `logitloom.serving`: sampling strategies,
the autoregressive decode loop and its streaming cursor. Everything else
(hub, tokenizers, config, CLI) exists to feed that loop.
"""

__version__ = "0.1.0"
