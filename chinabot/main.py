from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from logging import Logger
from pathlib import Path

from aiohttp import web

from chinabot.config import Config, load_config
from chinabot.infrastructure.concurrency import UserLocks
from chinabot.onboarding import OnboardingMachine
from chinabot.router import ResponseRouter
from chinabot.services.billing import BillingGate
from chinabot.services.broadcast import Broadcaster
from chinabot.services.kv_base import KeyValueStore
from chinabot.services.kv_fallback import ResilientStore
from chinabot.services.kv_memory import MemoryStore
from chinabot.services.kv_sqlite import SqliteStore
from chinabot.services.line_client import LineClient
from chinabot.services.llm import ConversationHistory, LanguageModelAdapter
from chinabot.services.quota import QuotaLedger
from chinabot.services.repository import UserRepository
from chinabot.services.scheduler import BroadcastScheduler
from chinabot.services.templates import TemplateBank
from chinabot.web.api import create_app
from logger import get_logger, info_domain, setup_logging

PROJECT_ROOT = Path(__file__).resolve().parent.parent


async def build_store(config: Config) -> KeyValueStore:
    if config.store_backend == "memory":
        return MemoryStore()
    store_path = config.store_path
    if not store_path.is_absolute():
        store_path = (PROJECT_ROOT / store_path).resolve()
    primary = SqliteStore(store_path)
    await primary.init()
    return ResilientStore(primary, retry_after=config.store_retry_after_seconds)


async def _wait_for_stop(logger: Logger) -> None:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(sig: signal.Signals) -> None:
        logger.debug("Received %s signal. Shutting down...", sig.name)
        stop_event.set()

    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
            continue
    try:
        await stop_event.wait()
    finally:
        for sig in signals:
            with suppress(ValueError, RuntimeError):
                loop.remove_signal_handler(sig)


async def main() -> None:
    config = load_config()
    setup_logging(config.log_level, config.log_dir, noise=config.log_noise)
    logger = get_logger("bot.start")

    info_domain(
        "bot.start",
        "Config loaded",
        stage="CONFIG_OK",
        store=config.store_backend,
        llm=config.llm.enabled,
        billing=config.billing_enabled,
        scheduler=config.enable_scheduler,
    )

    store = await build_store(config)
    repository = UserRepository(
        store,
        owner_ids=config.owner_user_ids,
        lover_name_pattern=config.lover_name_pattern,
    )
    templates = TemplateBank(store)
    line_client = LineClient(config.channel_access_token)
    billing = BillingGate(repository, config.checkout_urls, profile_loader=line_client.get_profile)

    router = ResponseRouter(
        repository=repository,
        quota=QuotaLedger(store, config.quota, config.timezone),
        templates=templates,
        onboarding=OnboardingMachine(lover_name_pattern=config.lover_name_pattern),
        llm=LanguageModelAdapter(config.llm, store),
        history=ConversationHistory(store, config.llm.history_turns),
        billing=billing,
        profile_loader=line_client.get_profile,
        locks=UserLocks(),
        status_every_n_turns=config.status_every_n_turns,
        low_quota_warning=config.low_quota_warning,
        tz=config.timezone,
    )
    broadcaster = Broadcaster(
        repository,
        line_client,
        templates,
        tz=config.timezone,
        random_talk_rate=config.random_talk_rate,
    )

    app = create_app(
        config,
        router=router,
        sender=line_client,
        billing=billing,
        broadcaster=broadcaster,
    )
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()
    info_domain("bot.start", "Listening", stage="HTTP_READY", host=config.host, port=config.port)

    scheduler: BroadcastScheduler | None = None
    if config.enable_scheduler:
        scheduler = BroadcastScheduler(broadcaster, tz=config.timezone)
        scheduler.start()

    try:
        await _wait_for_stop(logger)
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await runner.cleanup()
        await line_client.close()
        await store.close()
        info_domain("bot.start", "Stopped", stage="SHUTDOWN")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
