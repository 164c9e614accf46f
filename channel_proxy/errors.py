"""Exception hierarchy for the channel proxy.

Every pipeline failure is a :class:`ChannelProxyError`. The stage groups
(:class:`DownloadFailure`, :class:`UnpackFailure`, :class:`BuildFailure`,
:class:`PublishFailure`) let the coordinator report which part of a job
failed, while the leaf classes keep the structured context (URLs, paths,
exit statuses, underlying ``OSError``) for logging.
"""

from __future__ import annotations

from pathlib import Path


class ChannelProxyError(Exception):
    """Base exception for all channel proxy errors."""

    def context(self) -> dict[str, object]:
        """Structured fields for log records."""
        return {}


class TempDirError(ChannelProxyError):
    """The job-scoped temporary directory could not be created."""

    def __init__(self, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"failed to create temporary directory: {cause}")

    def context(self) -> dict[str, object]:
        return {"cause": str(self.cause)}


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------


class DownloadFailure(ChannelProxyError):
    """The upstream archive could not be downloaded."""

    def __init__(self, message: str, *, url: str, dest: Path) -> None:
        self.url = url
        self.dest = dest
        super().__init__(message)

    def context(self) -> dict[str, object]:
        return {"url": self.url, "dest": str(self.dest)}


class DownloadError(DownloadFailure):
    """The download tool could not be started."""

    def __init__(self, url: str, dest: Path, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"failed to download {url} to {dest}: {cause}", url=url, dest=dest)

    def context(self) -> dict[str, object]:
        return {**super().context(), "cause": str(self.cause)}


class DownloadStatusError(DownloadFailure):
    """The download tool exited with a non-zero status."""

    def __init__(self, url: str, dest: Path, exit_status: int) -> None:
        self.exit_status = exit_status
        super().__init__(
            f"failed to download {url} to {dest}: child process exited with status {exit_status}",
            url=url,
            dest=dest,
        )

    def context(self) -> dict[str, object]:
        return {**super().context(), "exit_status": self.exit_status}


class DownloadMissingOutputError(DownloadFailure):
    """The download tool exited cleanly but wrote no output file."""

    def __init__(self, url: str, dest: Path) -> None:
        super().__init__(
            f"failed to download {url} to {dest}: no output file was written",
            url=url,
            dest=dest,
        )


# ---------------------------------------------------------------------------
# Unpack
# ---------------------------------------------------------------------------


class UnpackFailure(ChannelProxyError):
    """The archive could not be unpacked or did not validate."""

    def __init__(self, message: str, *, directory: Path) -> None:
        self.directory = directory
        super().__init__(message)

    def context(self) -> dict[str, object]:
        return {"directory": str(self.directory)}


class CreateDirError(UnpackFailure):
    """The unpack directory could not be created."""

    def __init__(self, directory: Path, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"failed to create {directory}: {cause}", directory=directory)

    def context(self) -> dict[str, object]:
        return {**super().context(), "cause": str(self.cause)}


class ExtractError(UnpackFailure):
    """The archive extractor could not be started."""

    def __init__(self, file: Path, directory: Path, cause: OSError) -> None:
        self.file = file
        self.cause = cause
        super().__init__(f"failed to unpack {file} into {directory}: {cause}", directory=directory)

    def context(self) -> dict[str, object]:
        return {**super().context(), "file": str(self.file), "cause": str(self.cause)}


class ExtractStatusError(UnpackFailure):
    """The archive extractor exited with a non-zero status."""

    def __init__(self, file: Path, directory: Path, exit_status: int) -> None:
        self.file = file
        self.exit_status = exit_status
        super().__init__(
            f"failed to unpack {file} into {directory}: "
            f"child process exited with status {exit_status}",
            directory=directory,
        )

    def context(self) -> dict[str, object]:
        return {**super().context(), "file": str(self.file), "exit_status": self.exit_status}


class ReadDirError(UnpackFailure):
    """The unpack directory could not be listed."""

    def __init__(self, directory: Path, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"failed to read directory {directory}: {cause}", directory=directory)

    def context(self) -> dict[str, object]:
        return {**super().context(), "cause": str(self.cause)}


class TooFewEntriesError(UnpackFailure):
    """The archive unpacked to nothing."""

    def __init__(self, directory: Path) -> None:
        super().__init__(f"unpack produced too few files in {directory}", directory=directory)


class TooManyEntriesError(UnpackFailure):
    """The archive unpacked to more than one top-level entry."""

    def __init__(self, directory: Path) -> None:
        super().__init__(f"unpack produced too many files in {directory}", directory=directory)


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class BuildFailure(ChannelProxyError):
    """Pre-building the configured expression failed."""


class BuildError(BuildFailure):
    """The build tool could not be started."""

    def __init__(self, cause: OSError) -> None:
        self.cause = cause
        super().__init__(f"failed to pre-build targets: {cause}")

    def context(self) -> dict[str, object]:
        return {"cause": str(self.cause)}


class BuildStatusError(BuildFailure):
    """The build tool exited with a non-zero status."""

    def __init__(self, exit_status: int) -> None:
        self.exit_status = exit_status
        super().__init__(
            f"failed to pre-build targets: child process exited with status {exit_status}"
        )

    def context(self) -> dict[str, object]:
        return {"exit_status": self.exit_status}


# ---------------------------------------------------------------------------
# Publish
# ---------------------------------------------------------------------------


class PublishFailure(ChannelProxyError):
    """The validated archive could not be published."""


class RenameError(PublishFailure):
    """Atomic rename of the archive onto the persistent path failed."""

    def __init__(self, src: Path, dest: Path, cause: OSError) -> None:
        self.src = src
        self.dest = dest
        self.cause = cause
        super().__init__(f"failed to rename {src} to {dest}: {cause}")

    def context(self) -> dict[str, object]:
        return {"src": str(self.src), "dest": str(self.dest), "cause": str(self.cause)}


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class ServerStartError(ChannelProxyError):
    """The HTTP server could not bind or start. Fatal."""

    def __init__(self, host: str, port: int, cause: OSError) -> None:
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(f"failed to start HTTP server on {host}:{port}: {cause}")

    def context(self) -> dict[str, object]:
        return {"host": self.host, "port": self.port, "cause": str(self.cause)}
