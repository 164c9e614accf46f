"""Publish stage: atomically swap the new archive into place."""

from __future__ import annotations

import os
from pathlib import Path

from channel_proxy.errors import RenameError
from channel_proxy.logging import get_logger

log = get_logger("channel_proxy.publisher")


def publish(src: Path, dest: Path) -> None:
    """Move ``src`` onto ``dest`` with a single rename.

    Readers of ``dest`` see either the old file or the new one, never a
    partial write. ``src`` and ``dest`` must be on the same filesystem; a
    cross-device move fails with :class:`RenameError` instead of copying.
    """
    log.info("channel_publish", src=str(src), dest=str(dest))
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dest)
    except OSError as exc:
        raise RenameError(src, dest, exc) from exc
