"""Unpack stage: extract the channel archive and locate its single root."""

from __future__ import annotations

import os
from pathlib import Path

from channel_proxy.commands import CommandRunner
from channel_proxy.errors import (
    CreateDirError,
    ExtractError,
    ExtractStatusError,
    ReadDirError,
    TooFewEntriesError,
    TooManyEntriesError,
)
from channel_proxy.logging import get_logger

log = get_logger("channel_proxy.unpacker")


def extract_command(archive: Path, dest_dir: Path, tar: str = "tar") -> list[str]:
    return [
        tar,
        "--extract",
        "--xz",
        "--file",
        str(archive),
        "--directory",
        str(dest_dir),
    ]


def single_entry(directory: Path) -> Path:
    """Return the only entry of ``directory``.

    Channel archives wrap everything in one top-level directory
    (``nixos-19.03.173684.c8db7a8a16e/``); anything else is malformed.
    """
    try:
        with os.scandir(directory) as entries:
            first = next(entries, None)
            if first is None:
                raise TooFewEntriesError(directory)
            if next(entries, None) is not None:
                raise TooManyEntriesError(directory)
            return Path(first.path)
    except OSError as exc:
        raise ReadDirError(directory, exc) from exc


async def unpack(archive: Path, dest_dir: Path, runner: CommandRunner, tar: str = "tar") -> Path:
    """Extract ``archive`` into the new directory ``dest_dir`` and return its root entry."""
    log.info("channel_unpack_started", archive=str(archive), dest=str(dest_dir))
    try:
        dest_dir.mkdir()
    except OSError as exc:
        raise CreateDirError(dest_dir, exc) from exc

    try:
        result = await runner.run(extract_command(archive, dest_dir, tar))
    except OSError as exc:
        raise ExtractError(archive, dest_dir, exc) from exc
    if not result.ok:
        raise ExtractStatusError(archive, dest_dir, result.returncode)

    root = single_entry(dest_dir)
    log.info("channel_unpack_finished", root=str(root))
    return root
