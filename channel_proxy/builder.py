"""Build stage: warm the nix store by pre-building an expression."""

from __future__ import annotations

from pathlib import Path

from channel_proxy.commands import CommandRunner
from channel_proxy.errors import BuildError, BuildStatusError
from channel_proxy.logging import get_logger

log = get_logger("channel_proxy.builder")


def build_command(nixpkgs_root: Path, expression: str, nix_build: str = "nix-build") -> list[str]:
    return [
        nix_build,
        "--no-out-link",
        "-I",
        f"nixpkgs={nixpkgs_root}",
        "--expr",
        expression,
    ]


async def build(
    nixpkgs_root: Path,
    expression: str,
    runner: CommandRunner,
    nix_build: str = "nix-build",
) -> None:
    """Build ``expression`` with ``<nixpkgs>`` pointing at the unpacked channel.

    Nothing is kept from the build itself; the point is that the results land
    in the nix store before clients ask for them.
    """
    log.info("prebuild_started", nixpkgs=str(nixpkgs_root))
    try:
        result = await runner.run(build_command(nixpkgs_root, expression, nix_build))
    except OSError as exc:
        raise BuildError(exc) from exc
    if not result.ok:
        raise BuildStatusError(result.returncode)
    log.info("prebuild_finished", nixpkgs=str(nixpkgs_root))
