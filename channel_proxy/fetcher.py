"""Download stage: fetch the upstream channel archive with curl."""

from __future__ import annotations

from pathlib import Path

from channel_proxy.commands import CommandRunner
from channel_proxy.errors import DownloadError, DownloadMissingOutputError, DownloadStatusError
from channel_proxy.logging import get_logger

log = get_logger("channel_proxy.fetcher")


def download_command(url: str, dest: Path, curl: str = "curl") -> list[str]:
    """Follow redirects, fail on HTTP errors, and stay quiet unless something breaks."""
    return [
        curl,
        "--location",
        "--fail",
        "--silent",
        "--show-error",
        "--output",
        str(dest),
        url,
    ]


async def fetch(url: str, dest: Path, runner: CommandRunner, curl: str = "curl") -> None:
    """Download ``url`` to ``dest``.

    ``dest``'s parent directory must exist. On failure any partial file at
    ``dest`` is removed so later stages cannot mistake it for an archive.
    """
    log.info("channel_download_started", url=url, dest=str(dest))
    try:
        result = await runner.run(download_command(url, dest, curl))
    except OSError as exc:
        dest.unlink(missing_ok=True)
        raise DownloadError(url, dest, exc) from exc

    if not result.ok:
        dest.unlink(missing_ok=True)
        raise DownloadStatusError(url, dest, result.returncode)

    # Older curl releases create no output file for an empty 2xx body
    if not dest.is_file():
        raise DownloadMissingOutputError(url, dest)

    log.info("channel_download_finished", url=url, size=dest.stat().st_size)
