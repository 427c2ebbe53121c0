# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the logitloom CLI.

Each function here corresponds to one CLI subcommand and returns an exit
code. Handlers are the only place where exceptions turn into exit codes:
everything below them raises, and each failure is logged exactly once,
here.

Stdout carries generated text (and the model list for `list`). Everything
else goes through the structured logger on stderr.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional, TextIO

from logitloom import __version__
from logitloom.cli.exit_codes import CONFIG_ERROR, RUNTIME_ERROR, SUCCESS, USER_ERROR, VALIDATION_ERROR
from logitloom.config.exceptions import ConfigError
from logitloom.config.loader import load_config
from logitloom.config.schema import GenerationSettings, HubConfig, LogitloomConfig, ModelSourceConfig
from logitloom.hub.core import ModelHub, is_repo_id
from logitloom.hub.exceptions import HubDownloadError, HubError
from logitloom.logging.logger import configure_logging, get_logger
from logitloom.serving.exceptions import GenerationError, InferenceFailure, InvalidConfiguration
from logitloom.serving.generation.core import GenerationConfig
from logitloom.serving.sampling.selector import select_strategy

if TYPE_CHECKING:
    from logitloom.serving.engine.core import InferenceEngine, Prompt

# the CLI samples a little cooler than the library default
_CLI_GENERATION_DEFAULTS = GenerationSettings(temperature=0.7)
_SAMPLING_TEMPERATURE_THRESHOLD = 0.01


def _load_and_setup(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, Optional[LogitloomConfig], logging.Logger]:
    """
    The shared setup every command needs: load config, apply the log level.

    Returns a tuple of (exit_code, config, logger). If exit_code is not SUCCESS,
    the caller should return it immediately. Something went wrong during setup.
    """
    log_level = args.log_level or "INFO"
    logger = get_logger(f"logitloom.cli.{command_name}", log_level=log_level)

    config = None
    if args.config is not None:
        try:
            config = load_config(Path(args.config))
        except ConfigError as err:
            logger.error(
                "Configuration error",
                extra={"command": command_name, "error": str(err)},
            )
            return CONFIG_ERROR, None, logger

    log_file = None
    if config is not None:
        if args.log_level is None:
            log_level = config.global_config.log_level
        if config.global_config.log_file is not None:
            log_file = Path(config.global_config.log_file).expanduser()

    try:
        configure_logging(log_level, log_file=log_file)
    except OSError as err:
        logger.error(
            "Cannot open log file",
            extra={"command": command_name, "path": str(log_file), "error": str(err)},
        )
        return CONFIG_ERROR, None, logger

    if config is None:
        logger.debug(
            "No config provided, running with defaults",
            extra={"command": command_name},
        )

    return SUCCESS, config, logger


def _hub_from(args: argparse.Namespace, config: Optional[LogitloomConfig]) -> ModelHub:
    """Build the hub client: flags first, then the config file, then defaults."""
    hub_cfg = config.hub if config is not None else HubConfig()

    cache_dir = getattr(args, "cache_dir", None) or hub_cfg.cache_dir
    token = getattr(args, "token", None) or os.environ.get(hub_cfg.token_env) or None

    return ModelHub(
        cache_dir=Path(cache_dir).expanduser() if cache_dir else None,
        endpoint=hub_cfg.endpoint,
        auth_token=token,
        timeout_seconds=hub_cfg.timeout_seconds,
    )


def build_generation_config(
    args: argparse.Namespace,
    config: Optional[LogitloomConfig],
) -> GenerationConfig:
    """
    Merge flags over the config file's generation section.

    Sampling is switched on only when the effective temperature is above
    0.01; at or below that the run is greedy.

    Raises:
        InvalidConfiguration: max_new_tokens is not positive.
    """
    settings = config.generation if config is not None else _CLI_GENERATION_DEFAULTS

    temperature = args.temperature if args.temperature is not None else settings.temperature
    do_sample = settings.do_sample and temperature > _SAMPLING_TEMPERATURE_THRESHOLD

    return GenerationConfig.from_settings(
        settings,
        max_new_tokens=args.max_tokens,
        temperature=temperature,
        top_p=args.top_p,
        top_k=args.top_k,
        stop_sequence=args.stop,
        seed=args.seed,
        do_sample=do_sample,
    )


def write_generation(
    engine: "InferenceEngine",
    prompt: "Prompt",
    config: GenerationConfig,
    stream: bool = False,
    out: Optional[TextIO] = None,
) -> None:
    """
    Write generated text to `out` (stdout by default), newline-terminated.

    When the backend fails, whatever was decoded but not yet written is
    written before the InferenceFailure propagates. A streaming failure
    surfaces one fragment after that fragment was decoded, so the tail of
    `partial_text` past what was already streamed still has to go out.
    """
    out = out if out is not None else sys.stdout

    if not stream:
        try:
            text = engine.generate(prompt, config)
        except InferenceFailure as err:
            if err.partial_text.strip():
                out.write(err.partial_text.strip() + "\n")
                out.flush()
            raise
        out.write(text + "\n")
        out.flush()
        return

    written = 0
    try:
        for fragment in engine.generate_stream(prompt, config):
            out.write(fragment)
            out.flush()
            written += len(fragment)
    except InferenceFailure as err:
        tail = err.partial_text[written:]
        if written or tail:
            out.write(tail + "\n")
            out.flush()
        raise
    out.write("\n")
    out.flush()


def handle_run(args: argparse.Namespace) -> int:
    """Resolve a model, load it, and generate from a prompt."""
    exit_code, config, logger = _load_and_setup(args, "run")
    if exit_code != SUCCESS:
        return exit_code

    model_cfg = config.model if config is not None else ModelSourceConfig()
    model_id = args.model or model_cfg.source
    if not model_id:
        logger.error("No model given. Use --model or set model.source in the config")
        return USER_ERROR

    prompt = args.prompt
    if not prompt:
        logger.error("No prompt provided. Use --prompt")
        return USER_ERROR

    try:
        gen_config = build_generation_config(args, config)
        strategy = select_strategy(gen_config)
    except InvalidConfiguration as err:
        logger.error("Invalid generation parameters", extra={"error": str(err)})
        return VALIDATION_ERROR

    stream = args.stream if args.stream is not None else (
        config.generation.stream if config is not None else False
    )
    force_download = args.force_download or model_cfg.force_download
    device = args.device or model_cfg.device
    tokenizer_arg = args.tokenizer or model_cfg.tokenizer_path

    logger.info(
        "Starting generation",
        extra={
            "model": model_id,
            "dry_run": args.dry_run,
            "strategy": strategy.name,
            "max_new_tokens": gen_config.max_new_tokens,
            "stream": stream,
        },
    )

    if args.dry_run:
        logger.info(
            "Dry run, would generate text",
            extra={"prompt_length": len(prompt), "max_new_tokens": gen_config.max_new_tokens},
        )
        return SUCCESS

    from logitloom.hub.resolver import ModelResolver
    from logitloom.serving.loader.core import load_engine

    try:
        resolved = ModelResolver(_hub_from(args, config)).resolve(
            model_id, force_download=force_download
        )
    except HubDownloadError as err:
        logger.error("Model download failed", extra={"model": model_id, "error": str(err)})
        return RUNTIME_ERROR
    except HubError as err:
        logger.error("Model not found", extra={"model": model_id, "error": str(err)})
        return USER_ERROR

    try:
        engine = load_engine(
            resolved,
            device=device,
            context_length=model_cfg.context_length,
            tokenizer_path=Path(tokenizer_arg).expanduser() if tokenizer_arg else None,
        )
    except (OSError, RuntimeError) as err:
        logger.error("Model loading failed", extra={"model": model_id, "error": str(err)}, exc_info=True)
        return RUNTIME_ERROR

    try:
        write_generation(engine, prompt, gen_config, stream=stream)
    except InferenceFailure as err:
        logger.error(
            "Generation failed",
            extra={"model": model_id, "error": str(err), "partial_chars": len(err.partial_text)},
        )
        return RUNTIME_ERROR
    except GenerationError as err:
        logger.error("Generation failed", extra={"model": model_id, "error": str(err)})
        return RUNTIME_ERROR
    finally:
        engine.close()

    logger.info("Generation complete", extra=engine.metrics.summary())
    return SUCCESS


def handle_download(args: argparse.Namespace) -> int:
    """Download a hub model into the cache."""
    exit_code, config, logger = _load_and_setup(args, "download")
    if exit_code != SUCCESS:
        return exit_code

    if not is_repo_id(args.model):
        logger.error(
            "Invalid repository id, expected user/repo",
            extra={"model": args.model},
        )
        return USER_ERROR

    hub = _hub_from(args, config)
    if args.dry_run:
        logger.info(
            "Dry run, would download model",
            extra={"model": args.model, "path": str(hub.cache_path(args.model))},
        )
        return SUCCESS

    try:
        path = hub.get_model(args.model, force=args.force_download)
    except HubError as err:
        logger.error("Download failed", extra={"model": args.model, "error": str(err)})
        return RUNTIME_ERROR

    logger.info("Model available", extra={"model": args.model, "path": str(path)})
    return SUCCESS


def handle_list(args: argparse.Namespace) -> int:
    """Print every cached model, one repository id per line."""
    exit_code, config, logger = _load_and_setup(args, "list")
    if exit_code != SUCCESS:
        return exit_code

    hub = _hub_from(args, config)
    models = hub.list_cached()
    for repo_id in models:
        sys.stdout.write(repo_id + "\n")

    logger.info(
        "Cached models",
        extra={"count": len(models), "cache_dir": str(hub.cache_dir)},
    )
    return SUCCESS


def handle_delete(args: argparse.Namespace) -> int:
    """Remove a model from the cache."""
    exit_code, config, logger = _load_and_setup(args, "delete")
    if exit_code != SUCCESS:
        return exit_code

    if not is_repo_id(args.model):
        logger.error("Invalid repository id, expected user/repo", extra={"model": args.model})
        return USER_ERROR

    hub = _hub_from(args, config)
    if not hub.cache_path(args.model).exists():
        logger.error("Model not in cache", extra={"model": args.model})
        return USER_ERROR

    if args.dry_run:
        logger.info(
            "Dry run, would delete model",
            extra={"model": args.model, "path": str(hub.cache_path(args.model))},
        )
        return SUCCESS

    try:
        hub.delete(args.model)
    except OSError as err:
        logger.error("Delete failed", extra={"model": args.model, "error": str(err)})
        return RUNTIME_ERROR
    return SUCCESS


def handle_info(args: argparse.Namespace) -> int:
    """Display environment, cache and (optionally) model information."""
    exit_code, config, logger = _load_and_setup(args, "info")
    if exit_code != SUCCESS:
        return exit_code

    import platform

    import torch

    hub = _hub_from(args, config)
    logger.info(
        "System information",
        extra={
            "logitloom_version": __version__,
            "python_version": platform.python_version(),
            "torch_version": torch.__version__,
            "cuda_available": torch.cuda.is_available(),
            "platform": platform.platform(),
            "cache_dir": str(hub.cache_dir),
            "cached_models": len(hub.list_cached()),
            "config": args.config,
        },
    )

    if not args.model:
        return SUCCESS

    from logitloom.hub.resolver import ModelResolver

    resolver = ModelResolver(hub)
    if not resolver.is_available(args.model):
        logger.error(
            "Model not available locally. Download it first",
            extra={"model": args.model},
        )
        return USER_ERROR

    try:
        resolved = resolver.resolve(args.model)
    except HubError as err:
        logger.error("Model resolution failed", extra={"model": args.model, "error": str(err)})
        return USER_ERROR

    logger.info(
        "Model information",
        extra={
            "model": resolved.name,
            "model_path": str(resolved.model_path),
            "format": resolved.model_format,
            "tokenizer_path": str(resolved.tokenizer_path) if resolved.tokenizer_path else None,
            "context_length": resolved.context_length,
            "vocab_size": resolved.vocab_size,
            "eos_token_id": resolved.eos_token_id,
        },
    )
    return SUCCESS
