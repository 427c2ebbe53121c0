# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions for model acquisition and resolution.

Kept apart from the generation errors: the CLI maps hub failures to a
different exit code than failures during decoding.
"""


class HubError(Exception):
    """Base for all hub and resolution errors."""


class InvalidRepoIdError(HubError):
    """The identifier isn't a `user/repo` style repository id."""


class ModelNotFoundError(HubError):
    """The identifier is neither an existing local path nor a repository id."""


class HubDownloadError(HubError):
    """Listing the repository failed, or not a single file could be downloaded."""
