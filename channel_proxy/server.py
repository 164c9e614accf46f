"""HTTP server for the channel proxy (aiohttp).

Endpoints:
    GET  /channel                   - Liveness check, empty body
    GET  /channel/nixexprs.tar.xz   - Last published channel archive (404 before the first)
    GET  /upstream                  - Configured upstream channel URL
    POST /update                    - Start an update job; always 202
    GET  /status                    - Coordinator state and last job outcome
"""

from __future__ import annotations

import asyncio
import os

from aiohttp import hdrs, web

from channel_proxy import __version__
from channel_proxy.config import Settings
from channel_proxy.coordinator import UpdateCoordinator
from channel_proxy.errors import ServerStartError
from channel_proxy.logging import get_logger, setup_logging

log = get_logger("channel_proxy.server")

SETTINGS_KEY = web.AppKey("settings", Settings)
COORDINATOR_KEY = web.AppKey("coordinator", UpdateCoordinator)

NIXEXPRS_CONTENT_TYPE = "application/x-xz"
_CHUNK_SIZE = 256 * 1024


# ------------------------------------------------------------------
# Route handlers
# ------------------------------------------------------------------


async def handle_channel(request: web.Request) -> web.Response:
    return web.Response()


async def handle_nixexprs(request: web.Request) -> web.StreamResponse:
    path = request.app[SETTINGS_KEY].persistent_nixexprs_path
    try:
        # The open handle pins the current file; a concurrent publish renames
        # a new file into place without affecting what this response streams.
        fobj = path.open("rb")
    except FileNotFoundError:
        return web.Response(status=404, text="no channel has been published yet\n")

    # Closed on HEAD, on client disconnect and after the last chunk
    with fobj:
        response = web.StreamResponse(headers={hdrs.CONTENT_TYPE: NIXEXPRS_CONTENT_TYPE})
        response.content_length = os.fstat(fobj.fileno()).st_size
        await response.prepare(request)
        if request.method != hdrs.METH_HEAD:
            while chunk := await asyncio.to_thread(fobj.read, _CHUNK_SIZE):
                await response.write(chunk)
        await response.write_eof()
    return response


async def handle_upstream(request: web.Request) -> web.Response:
    return web.Response(text=request.app[SETTINGS_KEY].upstream_channel_url)


async def handle_update(request: web.Request) -> web.Response:
    started = request.app[COORDINATOR_KEY].trigger()
    log.info("update_requested", started=started, remote=request.remote)
    return web.Response(status=202)


async def handle_status(request: web.Request) -> web.Response:
    coordinator = request.app[COORDINATOR_KEY]
    return web.json_response({"version": __version__, **coordinator.status_snapshot()})


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------


async def _wait_for_update(app: web.Application) -> None:
    coordinator = app[COORDINATOR_KEY]
    if coordinator.is_busy:
        log.info("shutdown_waiting_for_update", stage=coordinator.stage.value)
    await coordinator.wait()


def create_app(settings: Settings, coordinator: UpdateCoordinator) -> web.Application:
    """Create the aiohttp application."""
    app = web.Application()
    app[SETTINGS_KEY] = settings
    app[COORDINATOR_KEY] = coordinator

    app.router.add_get("/channel", handle_channel)
    app.router.add_get("/channel/nixexprs.tar.xz", handle_nixexprs)
    app.router.add_get("/upstream", handle_upstream)
    app.router.add_post("/update", handle_update)
    app.router.add_get("/status", handle_status)

    app.on_cleanup.append(_wait_for_update)
    return app


async def run_server(app: web.Application, host: str, port: int) -> None:
    """Serve ``app`` until cancelled. Bind failures raise :class:`ServerStartError`.

    The first update job starts once the socket is bound.
    """
    runner = web.AppRunner(app)
    await runner.setup()
    try:
        site = web.TCPSite(runner, host, port)
        try:
            await site.start()
        except OSError as exc:
            raise ServerStartError(host, port, exc) from exc

        log.info("channel_proxy_listening", url=f"http://{host}:{port}/")
        app[COORDINATOR_KEY].start()
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def main() -> int:
    """Start the channel proxy. Returns the process exit status."""
    settings = Settings()
    setup_logging(settings)
    log.info(
        "channel_proxy_starting",
        version=__version__,
        upstream=settings.upstream_channel_url,
        path=str(settings.persistent_nixexprs_path),
        build_enabled=settings.build_expression is not None,
    )

    app = create_app(settings, UpdateCoordinator(settings))
    try:
        asyncio.run(run_server(app, settings.host, settings.port))
    except ServerStartError as exc:
        log.error("server_start_failed", error=str(exc), **exc.context())
        return 1
    except KeyboardInterrupt:
        log.info("shutdown_requested")
    return 0
