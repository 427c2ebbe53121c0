# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model hub client and local model cache.

Models are fetched from a HuggingFace-compatible hub and kept in a local
cache directory (default ~/.logitloom/models). Each repository gets its
own subdirectory, with the slash in `user/repo` replaced by `--`:

    ~/.logitloom/models/
        gpt2-org--tiny-model/
            model.pt
            tokenizer.json
            config.json
            .logitloom_downloaded

The marker file is written last, after every file has landed, so a cache
directory without it is an interrupted download and gets fetched again.

A download works like this:
  1. GET {endpoint}/api/models/{repo_id} and read the file list
     from `siblings[].rfilename`
  2. Keep only what inference needs: weights, tokenizer files, configs
  3. Stream each file from {endpoint}/{repo_id}/resolve/main/{file} into
     a temp file and rename it into place
  4. Write the marker

A single file that fails to download is logged and skipped, since repos
often carry several equivalent weight formats. If nothing at all could be
downloaded, that's a HubDownloadError.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from logitloom import __version__
from logitloom.hub.exceptions import HubDownloadError, InvalidRepoIdError
from logitloom.logging.logger import get_logger
from logitloom.utils.filesystem import atomic_copy_stream, atomic_write, remove_tree

logger: logging.Logger = get_logger(__name__)

DEFAULT_ENDPOINT = "https://huggingface.co"
MARKER_FILENAME = ".logitloom_downloaded"

_WEIGHT_SUFFIXES = (".pt", ".pth", ".ts", ".safetensors", ".bin", ".onnx")
_CONFIG_FILES = frozenset({"config.json", "generation_config.json", "model_index.json"})
_TOKENIZER_FILES = frozenset({"vocab.json", "merges.txt", "special_tokens_map.json"})
_PROGRESS_STEP_BYTES = 64 * 1024 * 1024


def default_cache_dir() -> Path:
    return Path.home() / ".logitloom" / "models"


def is_repo_id(identifier: str) -> bool:
    """
    Does this look like a hub repository id (`user/repo`)?

    Exactly one slash, no leading slash or dot (those are local paths), and
    no backslashes or empty segments.
    """
    if not identifier:
        return False
    if identifier.count("/") != 1:
        return False
    if identifier.startswith(("/", ".")):
        return False
    if "\\" in identifier:
        return False
    owner, name = identifier.split("/")
    return bool(owner) and bool(name)


def is_essential_file(filename: str) -> bool:
    """Is this repository file needed for inference?"""
    lower = filename.lower()
    basename = lower.rsplit("/", 1)[-1]
    if lower.endswith(_WEIGHT_SUFFIXES):
        return True
    if "tokenizer" in basename or basename in _TOKENIZER_FILES:
        return True
    return basename in _CONFIG_FILES


def cache_target(model_dir: Path, filename: str) -> Optional[Path]:
    """
    Where a repository file lands inside `model_dir`, or None when the name
    would escape it (absolute paths, `..` segments, backslashes).
    """
    if not filename or "\\" in filename or filename.startswith("/"):
        return None
    target = model_dir / filename
    root = model_dir.resolve()
    resolved = target.resolve()
    if resolved == root or root not in resolved.parents:
        return None
    return target


class ModelHub:
    """
    Downloads repositories into the local cache and manages what's there.

    Auth tokens are only needed for private or gated repositories; they're
    sent as a bearer token on every request.
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        endpoint: str = DEFAULT_ENDPOINT,
        auth_token: Optional[str] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._cache_dir = cache_dir or default_cache_dir()
        self._endpoint = endpoint.rstrip("/")
        self._auth_token = auth_token
        self._timeout = timeout_seconds

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def set_auth_token(self, token: Optional[str]) -> None:
        self._auth_token = token

    def cache_path(self, repo_id: str) -> Path:
        """Where a repository lives (or would live) in the cache."""
        return self._cache_dir / repo_id.replace("/", "--")

    def is_cached(self, repo_id: str) -> bool:
        return (self.cache_path(repo_id) / MARKER_FILENAME).is_file()

    def get_model(self, repo_id: str, force: bool = False) -> Path:
        """
        Local directory for a repository, downloading it first if needed.

        Raises:
            InvalidRepoIdError: repo_id isn't `user/repo`.
            HubDownloadError: The repository couldn't be listed, or no file
                could be downloaded.
        """
        if not is_repo_id(repo_id):
            raise InvalidRepoIdError(
                f"Invalid repository id '{repo_id}'. Expected: 'user/repo' or 'org/repo'"
            )

        model_dir = self.cache_path(repo_id)
        if not force and self.is_cached(repo_id):
            logger.info("Model found in cache", extra={"repo_id": repo_id, "path": str(model_dir)})
            return model_dir

        logger.info("Downloading model", extra={"repo_id": repo_id, "endpoint": self._endpoint})
        self._download(repo_id, model_dir)
        return model_dir

    def list_cached(self) -> list[str]:
        """Repository ids of every fully downloaded model, sorted."""
        if not self._cache_dir.is_dir():
            return []

        models = []
        for entry in self._cache_dir.iterdir():
            if entry.is_dir() and (entry / MARKER_FILENAME).is_file():
                models.append(entry.name.replace("--", "/", 1))
        return sorted(models)

    def delete(self, repo_id: str) -> bool:
        """Remove a repository from the cache. False if it wasn't there."""
        removed = remove_tree(self.cache_path(repo_id))
        if removed:
            logger.info("Model deleted from cache", extra={"repo_id": repo_id})
        return removed

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": f"logitloom/{__version__}"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    def _open(self, url: str) -> Any:
        request = Request(url, headers=self._headers(), method="GET")
        return urlopen(request, timeout=self._timeout)

    def list_repo_files(self, repo_id: str) -> list[str]:
        """Every file name in the repository, as reported by the hub API."""
        url = f"{self._endpoint}/api/models/{repo_id}"
        try:
            with self._open(url) as resp:
                body = json.loads(resp.read().decode("utf-8"))
        except HTTPError as err:
            raise HubDownloadError(
                f"Failed to get model info for {repo_id}: HTTP {err.code}"
            ) from err
        except (URLError, OSError, ValueError) as err:
            raise HubDownloadError(f"Failed to get model info for {repo_id}: {err}") from err

        siblings = body.get("siblings", []) if isinstance(body, dict) else []
        return [s["rfilename"] for s in siblings if isinstance(s, dict) and "rfilename" in s]

    def _download_file(self, repo_id: str, filename: str, target: Path) -> int:
        url = f"{self._endpoint}/{repo_id}/resolve/main/{quote(filename)}"
        next_report = [_PROGRESS_STEP_BYTES]

        def _progress(written: int) -> None:
            if written >= next_report[0]:
                logger.debug("Download progress", extra={"file": filename, "bytes": written})
                next_report[0] += _PROGRESS_STEP_BYTES

        with self._open(url) as resp:
            return atomic_copy_stream(resp, target, on_chunk=_progress)

    def _download(self, repo_id: str, model_dir: Path) -> None:
        files = self.list_repo_files(repo_id)
        if not files:
            raise HubDownloadError(f"No files found in repository: {repo_id}")

        wanted = [name for name in files if is_essential_file(name)]
        logger.info("Files selected for download", extra={"repo_id": repo_id, "count": len(wanted)})

        model_dir.mkdir(parents=True, exist_ok=True)
        (model_dir / MARKER_FILENAME).unlink(missing_ok=True)

        downloaded = 0
        for filename in wanted:
            target = cache_target(model_dir, filename)
            if target is None:
                logger.warning(
                    "File name escapes the model directory, skipping",
                    extra={"repo_id": repo_id, "file": filename},
                )
                continue
            try:
                size = self._download_file(repo_id, filename, target)
            except (HTTPError, URLError, OSError) as err:
                logger.warning(
                    "File download failed, skipping",
                    extra={"repo_id": repo_id, "file": filename, "error": str(err)},
                )
                continue
            downloaded += 1
            logger.info(
                "File downloaded",
                extra={"file": filename, "bytes": size, "done": downloaded, "total": len(wanted)},
            )

        if downloaded == 0:
            raise HubDownloadError(f"Failed to download any files from: {repo_id}")

        atomic_write(
            model_dir / MARKER_FILENAME,
            f"{repo_id}\n{datetime.now(tz=timezone.utc).isoformat()}\n",
        )
        logger.info("Model downloaded", extra={"repo_id": repo_id, "path": str(model_dir)})
