"""
pagewatch - process entry point.

Wires the Telegram transport, the session registry, the page renderer and the
liveness endpoint together and runs them on one event loop until SIGINT or
SIGTERM.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from pagewatch.bot import WatchBot
from pagewatch.core.registry import SessionRegistry
from pagewatch.core.renderer import PageRenderer, RendererConfig
from pagewatch.core.watch_session import WatchConfig
from pagewatch.health import start_health_server
from pagewatch.telegram import TelegramClient, TelegramConfig

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)]
)
logger = logging.getLogger("pagewatch.server")


@dataclass(frozen=True)
class ServerSettings:
    token: Optional[str]
    host: str = "0.0.0.0"
    port: int = 8080
    retry_delay_ms: int = 5_000
    page_timeout_ms: int = 30_000
    browser_executable_path: Optional[str] = None
    headless: bool = True
    sandbox_enabled: bool = False
    shutdown_grace_s: float = 10.0


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "")
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings(env: Mapping[str, str] | None = None) -> ServerSettings:
    """Read settings from the environment, falling back to defaults."""
    env = os.environ if env is None else env
    return ServerSettings(
        token=(env.get("TG_TOKEN") or "").strip() or None,
        host=(env.get("HOST") or "").strip() or "0.0.0.0",
        port=_positive_int(env, "PORT", 8080),
        retry_delay_ms=_positive_int(env, "RETRY_DELAY_MS", 5_000),
        page_timeout_ms=_positive_int(env, "PAGE_TIMEOUT_MS", 30_000),
        browser_executable_path=(env.get("BROWSER_EXECUTABLE_PATH") or "").strip() or None,
        headless=_flag(env, "PAGEWATCH_HEADLESS", True),
        sandbox_enabled=_flag(env, "PAGEWATCH_SANDBOX", False),
    )


def build_bot(settings: ServerSettings, client: TelegramClient, registry: SessionRegistry) -> WatchBot:
    renderer = PageRenderer(
        RendererConfig(
            headless=settings.headless,
            executable_path=settings.browser_executable_path,
            sandbox_enabled=settings.sandbox_enabled,
        )
    )
    return WatchBot(
        sender=client,
        registry=registry,
        renderer=renderer,
        watch_config=WatchConfig(
            retry_interval_ms=settings.retry_delay_ms,
            navigation_timeout_ms=settings.page_timeout_ms,
        ),
    )


async def main() -> None:
    """Main entry point for the watch bot."""
    load_dotenv()
    settings = load_settings()
    if not settings.token:
        logger.error("[Server] TG_TOKEN is not set")
        raise SystemExit(1)

    health = await start_health_server(settings.host, settings.port)
    logger.info(f"[Server] Server is listening on port {health.port}")

    client = TelegramClient(TelegramConfig(token=settings.token))
    bot = build_bot(settings, client, SessionRegistry())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, stop, sig)
        except NotImplementedError:
            pass

    try:
        await client.run_polling(bot.handle_message, stop)
    finally:
        await bot.shutdown(settings.shutdown_grace_s)
        await client.close()
        await health.close()
        logger.info("[Server] Shutdown complete")


def _request_stop(stop: asyncio.Event, sig: signal.Signals) -> None:
    logger.info("[Server] %s received, shutting down gracefully.", sig.name)
    stop.set()


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
