from __future__ import annotations

from dataclasses import dataclass

from aiohttp import web


@dataclass
class HealthServer:
    runner: web.AppRunner
    site: web.TCPSite
    port: int

    async def close(self) -> None:
        await self.runner.cleanup()


async def _root(_: web.Request) -> web.Response:
    return web.Response(text="running")


def build_health_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/", _root)
    return app


async def start_health_server(host: str = "0.0.0.0", port: int = 8080) -> HealthServer:
    runner = web.AppRunner(build_health_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    sockets = site._server.sockets if site._server else []
    if not sockets:
        await runner.cleanup()
        raise RuntimeError("Health server failed to bind")
    bound_port = int(sockets[0].getsockname()[1])
    return HealthServer(runner=runner, site=site, port=bound_port)
