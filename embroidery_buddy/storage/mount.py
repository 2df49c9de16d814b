"""Loop mounting of the disk image with safe subprocess handling.

All commands are run with argument lists (never through a shell) and
``check=True``; failures surface as :class:`BackendError` carrying the
command's stderr.

Functions:
    - mount_loop(): Loop-mount a partition of an image file
    - unmount(): Unmount a mount point
    - sync(): Flush kernel buffers to the backing image
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from embroidery_buddy.exceptions import BackendError
from embroidery_buddy.logging import LoggerFactory


log = LoggerFactory.for_disk()


def _run(command: list[str]) -> subprocess.CompletedProcess:
    log.debug(f"Running command: {' '.join(command)}")
    try:
        return subprocess.run(command, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise BackendError(
            f"Command failed ({' '.join(command)}): {stderr or 'no error output'}"
        ) from e
    except OSError as e:
        raise BackendError(f"Could not run {command[0]}: {e}") from e


def mount_loop(image_path: Path | str, mount_dir: Path | str, offset: int = 0) -> None:
    """Mount the filesystem at byte ``offset`` of ``image_path`` on ``mount_dir``.

    Raises:
        BackendError: If mount fails
    """
    options = "loop" if offset == 0 else f"loop,offset={offset}"
    _run(["mount", "-o", options, str(image_path), str(mount_dir)])


def unmount(mount_dir: Path | str) -> None:
    """Unmount ``mount_dir``.

    Raises:
        BackendError: If umount fails
    """
    _run(["umount", str(mount_dir)])


def sync() -> None:
    _run(["sync"])
