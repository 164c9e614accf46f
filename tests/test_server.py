"""Tests for channel_proxy.server - aiohttp endpoints."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, BinaryIO
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer
from conftest import UPSTREAM, FakeRunner

from channel_proxy.config import Settings
from channel_proxy.coordinator import UpdateCoordinator
from channel_proxy.errors import ServerStartError
from channel_proxy.publisher import publish
from channel_proxy.server import create_app, main, run_server

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _make_client(settings: Settings, coordinator: UpdateCoordinator) -> TestClient:
    """Create an aiohttp TestClient wrapping our server app."""
    client = TestClient(TestServer(create_app(settings, coordinator)))
    await client.start_server()
    return client


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


class TestChannelEndpoint:
    """Tests for GET /channel."""

    async def test_returns_empty_200(self, settings: Settings) -> None:
        client = await _make_client(settings, UpdateCoordinator(settings, runner=FakeRunner()))
        try:
            resp = await client.get("/channel")
            assert resp.status == 200
            assert await resp.read() == b""
        finally:
            await client.close()


class TestUpstreamEndpoint:
    """Tests for GET /upstream."""

    async def test_returns_configured_url(self, settings: Settings) -> None:
        client = await _make_client(settings, UpdateCoordinator(settings, runner=FakeRunner()))
        try:
            resp = await client.get("/upstream")
            assert resp.status == 200
            assert await resp.text() == UPSTREAM
        finally:
            await client.close()


class TestNixexprsEndpoint:
    """Tests for GET /channel/nixexprs.tar.xz."""

    async def test_404_before_first_publish(self, settings: Settings) -> None:
        client = await _make_client(settings, UpdateCoordinator(settings, runner=FakeRunner()))
        try:
            resp = await client.get("/channel/nixexprs.tar.xz")
            assert resp.status == 404
        finally:
            await client.close()

    async def test_serves_published_bytes(self, settings: Settings) -> None:
        payload = bytes(range(256)) * 1000
        path = settings.persistent_nixexprs_path
        path.parent.mkdir(parents=True)
        path.write_bytes(payload)

        client = await _make_client(settings, UpdateCoordinator(settings, runner=FakeRunner()))
        try:
            resp = await client.get("/channel/nixexprs.tar.xz")
            assert resp.status == 200
            assert resp.content_type == "application/x-xz"
            assert "Content-Encoding" not in resp.headers
            assert await resp.read() == payload
        finally:
            await client.close()

    async def test_head_reports_length_and_closes_file(self, settings: Settings) -> None:
        payload = b"\xfd7zXZ\x00" + b"x" * 4096
        path = settings.persistent_nixexprs_path
        path.parent.mkdir(parents=True)
        path.write_bytes(payload)
        opened: list[BinaryIO] = []
        real_open = Path.open

        def _tracking_open(self: Path, *args: Any, **kwargs: Any) -> Any:
            fobj = real_open(self, *args, **kwargs)
            opened.append(fobj)
            return fobj

        client = await _make_client(settings, UpdateCoordinator(settings, runner=FakeRunner()))
        try:
            with patch.object(Path, "open", _tracking_open):
                resp = await client.head("/channel/nixexprs.tar.xz")
                assert resp.status == 200
                assert resp.headers["Content-Length"] == str(len(payload))
                assert await resp.read() == b""
        finally:
            await client.close()

        assert len(opened) == 1
        assert opened[0].closed

    async def test_publish_during_download_serves_old_bytes_only(self, settings: Settings) -> None:
        old = b"o" * (4 * 1024 * 1024)
        new = b"n" * (3 * 1024 * 1024)
        path = settings.persistent_nixexprs_path
        path.parent.mkdir(parents=True)
        path.write_bytes(old)
        staged = path.parent / "staged.tar.xz"
        staged.write_bytes(new)

        client = await _make_client(settings, UpdateCoordinator(settings, runner=FakeRunner()))
        try:
            resp = await client.get("/channel/nixexprs.tar.xz")
            head = await resp.content.readexactly(1024)
            publish(staged, path)
            body = head + await resp.read()

            assert resp.headers["Content-Length"] == str(len(old))
            assert body == old

            resp = await client.get("/channel/nixexprs.tar.xz")
            assert await resp.read() == new
        finally:
            await client.close()


# ---------------------------------------------------------------------------
# Update endpoint
# ---------------------------------------------------------------------------


class TestUpdateEndpoint:
    """Tests for POST /update."""

    async def test_publishes_upstream_archive(self, settings: Settings) -> None:
        payload = b"\xfd7zXZ" + b"x" * 12345
        coordinator = UpdateCoordinator(settings, runner=FakeRunner(payload=payload))
        client = await _make_client(settings, coordinator)
        try:
            resp = await client.post("/update")
            assert resp.status == 202
            await coordinator.wait()

            resp = await client.get("/channel/nixexprs.tar.xz")
            assert resp.status == 200
            body = await resp.read()
            assert len(body) == len(payload)
            assert body == payload

            resp = await client.get("/upstream")
            assert await resp.text() == "https://example.test/channel"
        finally:
            await client.close()

    async def test_202_while_job_running(self, settings: Settings) -> None:
        gate = asyncio.Event()
        runner = FakeRunner(fetch_gate=gate)
        coordinator = UpdateCoordinator(settings, runner=runner)
        client = await _make_client(settings, coordinator)
        try:
            first = await client.post("/update")
            second = await client.post("/update")
            assert (first.status, second.status) == (202, 202)
            assert coordinator.is_busy

            gate.set()
            await coordinator.wait()
            assert runner.programs() == ["curl"]
        finally:
            await client.close()

    async def test_202_when_job_fails(self, settings: Settings) -> None:
        coordinator = UpdateCoordinator(settings, runner=FakeRunner(statuses={"curl": 6}))
        client = await _make_client(settings, coordinator)
        try:
            resp = await client.post("/update")
            assert resp.status == 202
            outcome = await coordinator.wait()
            assert outcome is not None and not outcome.succeeded

            resp = await client.get("/channel/nixexprs.tar.xz")
            assert resp.status == 404
        finally:
            await client.close()

    async def test_get_not_allowed(self, settings: Settings) -> None:
        client = await _make_client(settings, UpdateCoordinator(settings, runner=FakeRunner()))
        try:
            resp = await client.get("/update")
            assert resp.status == 405
        finally:
            await client.close()


class TestStatusEndpoint:
    """Tests for GET /status."""

    async def test_reports_last_outcome(self, settings: Settings) -> None:
        coordinator = UpdateCoordinator(settings, runner=FakeRunner())
        client = await _make_client(settings, coordinator)
        try:
            await client.post("/update")
            await coordinator.wait()

            resp = await client.get("/status")
            assert resp.status == 200
            data = await resp.json()
            assert data["busy"] is False
            assert data["stage"] == "idle"
            assert data["last_outcome"]["status"] == "success"
            assert data["last_outcome"]["steps_completed"] == ["fetch", "publish"]
        finally:
            await client.close()


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class TestRunServer:
    """Tests for run_server() and main()."""

    async def test_bind_failure_raises_server_start_error(self, settings: Settings) -> None:
        coordinator = UpdateCoordinator(settings, runner=FakeRunner())
        app = create_app(settings, coordinator)

        with patch(
            "channel_proxy.server.web.TCPSite.start",
            new_callable=AsyncMock,
            side_effect=OSError(98, "Address already in use"),
        ):
            with pytest.raises(ServerStartError) as excinfo:
                await run_server(app, "127.0.0.1", 8000)

        assert excinfo.value.port == 8000
        assert "Address already in use" in str(excinfo.value)
        assert coordinator.last_outcome is None

    def test_main_returns_1_on_bind_failure(self) -> None:
        error = ServerStartError("0.0.0.0", 8000, OSError(98, "Address already in use"))

        def _raise(coro):
            coro.close()
            raise error

        with (
            patch("channel_proxy.server.setup_logging"),
            patch("channel_proxy.server.asyncio.run", side_effect=_raise),
        ):
            assert main() == 1

    def test_main_returns_0_on_interrupt(self) -> None:
        def _interrupt(coro):
            coro.close()
            raise KeyboardInterrupt

        with (
            patch("channel_proxy.server.setup_logging"),
            patch("channel_proxy.server.asyncio.run", side_effect=_interrupt),
        ):
            assert main() == 0

    def test_main_wires_settings_into_app(self) -> None:
        with (
            patch("channel_proxy.server.setup_logging") as mock_setup,
            patch("channel_proxy.server.create_app", return_value=MagicMock()) as mock_create,
            patch("channel_proxy.server.asyncio.run", side_effect=lambda coro: coro.close()),
        ):
            assert main() == 0

        settings = mock_setup.call_args.args[0]
        assert mock_create.call_args.args[0] is settings
        assert isinstance(mock_create.call_args.args[1], UpdateCoordinator)
