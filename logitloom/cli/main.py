# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for logitloom.

This is the single root command: every operation is a subcommand of
`logitloom`. The global options (--config, --log-level, --dry-run) are
inherited by every subcommand through argparse's parent parser mechanism.

Usage:
    logitloom run -m gpt2-org/tiny-model -p "Once upon a time" --stream
    logitloom download gpt2-org/tiny-model
    logitloom list
    logitloom delete gpt2-org/tiny-model
    logitloom info
"""

import argparse
import sys

from logitloom.cli.commands import (
    handle_delete,
    handle_download,
    handle_info,
    handle_list,
    handle_run,
)
from logitloom.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """
    Build the parent parser with global options.

    We use a separate parent parser (with add_help=False) so that help text
    doesn't collide between the parent and the subcommand parsers.
    """
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level (overrides the config file).",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Validate arguments and configuration without loading or downloading anything.",
    )
    return parent


def _add_hub_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="Hub auth token for private or gated models (default: from the environment).",
    )
    parser.add_argument(
        "--cache-dir",
        type=str,
        default=None,
        dest="cache_dir",
        help="Model cache directory (default: ~/.logitloom/models).",
    )


def _register_run(subparsers: argparse._SubParsersAction, parent: argparse.ArgumentParser) -> None:  # type: ignore[type-arg]
    parser = subparsers.add_parser("run", parents=[parent], help="Generate text from a prompt.")
    parser.add_argument(
        "-m", "--model", type=str, default=None,
        help="Local model path or hub repository id (user/repo).",
    )
    parser.add_argument("-p", "--prompt", type=str, default=None, help="Input prompt.")
    parser.add_argument(
        "--max-tokens", type=int, default=None, dest="max_tokens",
        help="Maximum number of new tokens (default: 256).",
    )
    parser.add_argument(
        "--temperature", type=float, default=None,
        help="Sampling temperature; 0.01 or below means greedy (default: 0.7).",
    )
    parser.add_argument(
        "--top-p", type=float, default=None, dest="top_p",
        help="Nucleus sampling threshold (default: 0.9).",
    )
    parser.add_argument(
        "--top-k", type=int, default=None, dest="top_k",
        help="Top-k sampling cutoff (default: 50).",
    )
    parser.add_argument(
        "--stop", type=str, default=None,
        help="Stop generating once the output contains this text.",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for reproducible sampling (default: -1, random).",
    )
    parser.add_argument(
        "--stream", action="store_true", default=None,
        help="Write tokens to stdout as they are generated.",
    )
    parser.add_argument(
        "--force-download", action="store_true", default=None, dest="force_download",
        help="Re-download the model even if it is cached.",
    )
    parser.add_argument(
        "--device", type=str, default=None,
        help="Torch device: cpu, cuda, mps or auto (default: cpu).",
    )
    parser.add_argument(
        "--tokenizer", type=str, default=None,
        help="Explicit tokenizer.json to use instead of the one next to the model.",
    )
    _add_hub_options(parser)
    parser.set_defaults(func=handle_run)


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    """Register all subcommands with their handler functions."""
    _register_run(subparsers, parent)

    download = subparsers.add_parser(
        "download", parents=[parent], help="Download a model from the hub into the cache."
    )
    download.add_argument("model", type=str, help="Hub repository id (user/repo).")
    download.add_argument(
        "--force-download", action="store_true", default=False, dest="force_download",
        help="Re-download even if the model is cached.",
    )
    _add_hub_options(download)
    download.set_defaults(func=handle_download)

    list_parser = subparsers.add_parser("list", parents=[parent], help="List cached models.")
    list_parser.add_argument(
        "--cache-dir", type=str, default=None, dest="cache_dir",
        help="Model cache directory (default: ~/.logitloom/models).",
    )
    list_parser.set_defaults(func=handle_list)

    delete = subparsers.add_parser("delete", parents=[parent], help="Delete a cached model.")
    delete.add_argument("model", type=str, help="Hub repository id (user/repo).")
    delete.add_argument(
        "--cache-dir", type=str, default=None, dest="cache_dir",
        help="Model cache directory (default: ~/.logitloom/models).",
    )
    delete.set_defaults(func=handle_delete)

    info = subparsers.add_parser("info", parents=[parent], help="Display environment and config info.")
    info.add_argument(
        "-m", "--model", type=str, default=None,
        help="Also describe this model (local path or cached repository id).",
    )
    info.add_argument(
        "--cache-dir", type=str, default=None, dest="cache_dir",
        help="Model cache directory (default: ~/.logitloom/models).",
    )
    info.set_defaults(func=handle_info)


def main() -> None:
    """
    Main CLI entrypoint. This is what pyproject.toml's [project.scripts] points to.

      1. Build the argument parser with global options and all subcommands
      2. Parse the command line
      3. Call the handler function for the chosen subcommand
      4. Exit with the handler's return code

    If no subcommand is given, we show help and exit with USER_ERROR.
    """
    parent = _build_global_parser()

    root_parser = argparse.ArgumentParser(
        prog="logitloom",
        description="logitloom: local text generation with pluggable sampling strategies.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)

    args = root_parser.parse_args()

    if not hasattr(args, "func") or args.func is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
