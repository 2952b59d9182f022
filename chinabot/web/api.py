"""HTTP surface: LINE webhook, billing webhook, broadcasts and admin resets."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol, Sequence

from aiohttp import web

from chinabot.config import Config
from chinabot.infrastructure.logging_middleware import logging_middleware
from chinabot.models import InboundEvent, OutboundMessage
from chinabot.router import ResponseRouter
from chinabot.services.billing import BillingGate, parse_billing_event
from chinabot.services.broadcast import Broadcaster
from chinabot.services.line_client import LineApiError
from chinabot.texts import messages as msg
from chinabot.web.signature import (
    verify_billing_signature,
    verify_line_signature,
    verify_shared_secret,
)
from logger import bind_context, get_logger, reset_context

LOGGER = get_logger("http.api")


class ReplySender(Protocol):
    async def reply(self, reply_token: str, messages: Sequence[OutboundMessage]) -> None: ...


async def handle_index(request: web.Request) -> web.Response:
    return web.Response(text=msg.BANNER)


async def handle_health(request: web.Request) -> web.Response:
    return web.Response(text="OK")


async def handle_webhook(request: web.Request) -> web.Response:
    config: Config = request.app["config"]
    body = await request.read()
    if not verify_line_signature(body, request.headers.get("X-Line-Signature"), config.channel_secret):
        LOGGER.warning("Rejected webhook with bad signature", stage="WEBHOOK")
        return web.json_response({"error": "invalid_signature"}, status=400)
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "invalid_json"}, status=400)

    events = payload.get("events") if isinstance(payload, dict) else None
    accepted = 0
    for raw in events or []:
        event = InboundEvent.from_line(raw) if isinstance(raw, dict) else None
        if event is None:
            continue
        _spawn(request.app, _process_event(request.app, event))
        accepted += 1
    LOGGER.debug("Webhook accepted", stage="WEBHOOK", payload={"events": accepted})
    return web.Response(text="OK")


def _spawn(app: web.Application, coro: Any) -> None:
    tasks: set[asyncio.Task] = app["tasks"]
    task = asyncio.create_task(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)


async def _process_event(app: web.Application, event: InboundEvent) -> None:
    router: ResponseRouter = app["router"]
    sender: ReplySender = app["sender"]
    tokens = bind_context(user_id=event.user_id)
    try:
        replies = await router.handle(event)
        if replies and event.reply_token:
            await sender.reply(event.reply_token, replies)
    except LineApiError as exc:
        LOGGER.warning(
            "Reply delivery failed",
            stage="DELIVERY",
            payload={"status": exc.status_code, "body": exc.body},
        )
    except Exception:
        LOGGER.exception("Event processing failed", stage="WEBHOOK")
    finally:
        reset_context(tokens)


async def handle_billing_webhook(request: web.Request) -> web.Response:
    config: Config = request.app["config"]
    if not config.billing_webhook_secret:
        return web.json_response({"error": "billing_disabled"}, status=503)
    body = await request.read()
    signature = request.headers.get("X-Billing-Signature")
    if not verify_billing_signature(body, signature, config.billing_webhook_secret):
        return web.json_response({"error": "invalid_signature"}, status=401)
    try:
        event = parse_billing_event(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        return web.json_response({"error": "invalid_payload", "detail": str(exc)}, status=400)

    billing: BillingGate = request.app["billing"]
    record = await billing.set_plan(event.user_id, event.plan)
    return web.json_response({"user_id": record.user_id, "plan": record.plan.value})


async def handle_broadcast(request: web.Request) -> web.Response:
    config: Config = request.app["config"]
    if not verify_shared_secret(request.headers.get("X-Broadcast-Secret"), config.broadcast_secret):
        return web.json_response({"error": "forbidden"}, status=401)
    broadcaster: Broadcaster = request.app["broadcaster"]
    occasion = request.match_info["occasion"]
    try:
        result = await broadcaster.broadcast_once(occasion)
    except ValueError:
        return web.json_response({"error": "unknown_occasion"}, status=404)
    return web.json_response(result.as_dict())


async def handle_admin_reset(request: web.Request) -> web.Response:
    config: Config = request.app["config"]
    if not verify_shared_secret(request.headers.get("X-Admin-Token"), config.admin_token):
        return web.json_response({"error": "forbidden"}, status=401)
    router: ResponseRouter = request.app["router"]
    user_id = request.match_info["user_id"]
    removed = await router.reset_user(user_id)
    LOGGER.info("Admin reset", user_id=user_id, stage="ADMIN", payload={"removed": removed})
    return web.json_response({"user_id": user_id, "removed": removed})


async def _drain_tasks(app: web.Application) -> None:
    tasks: set[asyncio.Task] = app["tasks"]
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(
    config: Config,
    *,
    router: ResponseRouter,
    sender: ReplySender,
    billing: BillingGate,
    broadcaster: Broadcaster,
) -> web.Application:
    app = web.Application(middlewares=[logging_middleware])
    app["config"] = config
    app["router"] = router
    app["sender"] = sender
    app["billing"] = billing
    app["broadcaster"] = broadcaster
    app["tasks"] = set()
    app.router.add_route("GET", "/", handle_index)
    app.router.add_route("GET", "/health", handle_health)
    app.router.add_route("POST", "/webhook", handle_webhook)
    app.router.add_route("POST", "/billing/webhook", handle_billing_webhook)
    app.router.add_route("POST", "/broadcast/{occasion}", handle_broadcast)
    app.router.add_route("POST", "/admin/users/{user_id}/reset", handle_admin_reset)
    app.on_shutdown.append(_drain_tasks)
    return app
