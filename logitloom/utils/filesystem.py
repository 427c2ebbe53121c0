# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Safe filesystem operations for the model cache.

Two rules:
  - writes are atomic: a crash mid-download leaves a stray temp file, never
    a truncated model file that looks complete
  - deletes only ever touch what they were pointed at

Atomic writes work by writing to a temporary file in the same directory as
the target, then renaming. Rename on the same filesystem is atomic on POSIX.
"""

import io
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Callable, Optional

_TEMP_PREFIX = ".logitloom_tmp_"
_CHUNK_SIZE = 1024 * 1024


def atomic_write(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write text to a file atomically.

    If anything goes wrong during the write (disk full, permissions, crash),
    the target file is never touched: you either get the full new content or
    the old content, never a partial mess.

    Raises:
        OSError: If the write or rename fails.
    """
    atomic_copy_stream(io.BytesIO(content.encode(encoding)), target_path)


def atomic_copy_stream(
    source: BinaryIO,
    target_path: Path,
    on_chunk: Optional[Callable[[int], None]] = None,
) -> int:
    """
    Copy a binary stream into target_path atomically, in fixed-size chunks.

    Large model files never get loaded into memory in one piece. `on_chunk`
    is called with the running byte count after every chunk, which the hub
    uses for progress logging.

    Returns:
        Total number of bytes written.

    Raises:
        OSError: If the write or rename fails. Errors from `source.read`
            propagate unchanged. Either way the temp file is removed.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd = tempfile.NamedTemporaryFile(
        mode="wb",
        dir=str(target_path.parent),
        prefix=_TEMP_PREFIX,
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)
    written = 0

    try:
        while True:
            chunk = source.read(_CHUNK_SIZE)
            if not chunk:
                break
            temp_fd.write(chunk)
            written += len(chunk)
            if on_chunk is not None:
                on_chunk(written)
        temp_fd.flush()
        temp_fd.close()
        temp_path.replace(target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise

    return written


def remove_tree(path: Path) -> bool:
    """
    Delete a directory tree if it exists. Returns whether anything was deleted.

    Raises:
        OSError: If the tree exists but can't be removed.
    """
    if not path.exists():
        return False
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
    return True
