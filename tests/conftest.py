"""Shared fixtures: settings pointed at tmp_path and a scripted command runner."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest

from channel_proxy.commands import CommandResult
from channel_proxy.config import Settings

UPSTREAM = "https://example.test/channel"


class FakeRunner:
    """Stands in for curl, tar and nix-build.

    ``curl`` writes ``payload`` to its ``--output`` path, ``tar`` creates one
    directory per name in ``entries`` under ``--directory``, and ``nix-build``
    does nothing. Exit statuses are configurable per program, and programs
    listed in ``missing`` fail to launch. When ``fetch_gate`` is set, curl
    blocks on it before writing.
    """

    def __init__(
        self,
        *,
        payload: bytes = b"\xfd7zXZ\x00channel-archive",
        entries: Sequence[str] = ("nixos-19.03.173684.c8db7a8a16e",),
        statuses: dict[str, int] | None = None,
        missing: Sequence[str] = (),
        fetch_gate: asyncio.Event | None = None,
    ) -> None:
        self.payload = payload
        self.entries = list(entries)
        self.statuses = statuses or {}
        self.missing = set(missing)
        self.fetch_gate = fetch_gate
        self.calls: list[list[str]] = []

    def programs(self) -> list[str]:
        return [argv[0] for argv in self.calls]

    async def run(self, argv: Sequence[str]) -> CommandResult:
        argv = list(argv)
        self.calls.append(argv)
        program = argv[0]
        if program in self.missing:
            raise FileNotFoundError(2, "No such file or directory", program)

        status = self.statuses.get(program, 0)
        if program == "curl":
            if self.fetch_gate is not None:
                await self.fetch_gate.wait()
            output = Path(argv[argv.index("--output") + 1])
            # curl leaves whatever it managed to receive behind on failure
            output.write_bytes(self.payload if status == 0 else self.payload[:3])
        elif program == "tar" and status == 0:
            directory = Path(argv[argv.index("--directory") + 1])
            for name in self.entries:
                (directory / name).mkdir()
        return CommandResult(returncode=status)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        upstream_channel_url=UPSTREAM,
        persistent_nixexprs_path=tmp_path / "srv" / "nixexprs.tar.xz",
        build_expression=None,
        work_dir=tmp_path / "work",
    )


@pytest.fixture
def build_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"build_expression": "with import <nixpkgs> {}; hello"})


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()
