"""Chat-completion adapter with a persisted rate-limit circuit breaker."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

import aiohttp

from chinabot.config import LLMConfig
from chinabot.infrastructure.concurrency import with_generation_slot
from chinabot.models import UserRecord
from chinabot.services.kv_base import KeyValueStore, StoreError
from chinabot.services.repository import history_key
from chinabot.texts import messages as msg
from logger import get_logger

LOGGER = get_logger("generation.llm")

BREAKER_KEY = "breaker:llm"
HISTORY_TTL = 24 * 60 * 60
WRITE_RETRIES = 5
_RATE_LIMIT_MARKERS = ("rate_limit", "rate limit", "ratelimit", "quota")

Requester = Callable[[str, dict[str, Any], dict[str, str], float], Awaitable[tuple[int, str]]]
HistoryTurn = tuple[str, str]


class GenerationError(RuntimeError):
    """Raised internally when the backend fails to return usable text."""


class RateLimitedError(GenerationError):
    """Raised internally when the backend reports a rate or quota limit."""


async def _post_json(
    url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float
) -> tuple[int, str]:
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.post(url, json=payload, headers=headers) as response:
            return response.status, await response.text()


@dataclass(slots=True)
class BreakerState:
    blackout_until: float = 0.0
    attempts: int = 0


class CircuitBreaker:
    """Process-wide blackout after rate limiting, kept in the shared store.

    Each rate-limit signal that arrives while the breaker is closed moves one
    step further along the backoff schedule; the last entry repeats. Signals
    landing inside an open blackout belong to the same burst and change
    nothing. A success resets the counter. Writes are compare-and-set so
    concurrent tasks and processes never shorten or double-count a blackout.
    """

    def __init__(
        self,
        store: KeyValueStore,
        schedule: Sequence[int],
        *,
        key: str = BREAKER_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not schedule:
            raise ValueError("backoff schedule must not be empty")
        self._store = store
        self._schedule = tuple(schedule)
        self._key = key
        self._clock = clock

    async def state(self) -> BreakerState:
        _, state = await self._read()
        return state

    async def blackout_remaining(self) -> float:
        state = await self.state()
        return max(state.blackout_until - self._clock(), 0.0)

    async def record_rate_limit(self) -> float:
        """Open the breaker; return the remaining blackout in seconds."""

        for _ in range(WRITE_RETRIES):
            raw, state = await self._read()
            now = self._clock()
            if state.blackout_until > now:
                return state.blackout_until - now
            attempts = state.attempts + 1
            duration = self._schedule[min(attempts, len(self._schedule)) - 1]
            if await self._swap(raw, BreakerState(now + duration, attempts)):
                return float(duration)
        LOGGER.warning("Breaker update kept losing races", stage="LLM_RATE_LIMIT")
        return await self.blackout_remaining()

    async def record_success(self) -> None:
        for _ in range(WRITE_RETRIES):
            raw, state = await self._read()
            if not (state.attempts or state.blackout_until):
                return
            if await self._swap(raw, BreakerState()):
                return

    async def _read(self) -> tuple[Optional[str], BreakerState]:
        try:
            raw = await self._store.get(self._key)
        except StoreError:
            LOGGER.warning("Breaker state unavailable, assuming closed")
            return None, BreakerState()
        if not raw:
            return raw, BreakerState()
        try:
            data = json.loads(raw)
            return raw, BreakerState(float(data.get("blackout_until", 0)), int(data.get("attempts", 0)))
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError):
            return raw, BreakerState()

    async def _swap(self, expected: Optional[str], state: BreakerState) -> bool:
        value = json.dumps({"blackout_until": state.blackout_until, "attempts": state.attempts})
        try:
            return await self._store.compare_and_set(self._key, expected, value)
        except StoreError:
            LOGGER.warning("Could not persist breaker state", payload={"attempts": state.attempts})
            return True


class ConversationHistory:
    """Bounded window of recent user/assistant exchanges per user."""

    def __init__(self, store: KeyValueStore, max_turns: int, *, ttl: int = HISTORY_TTL) -> None:
        self._store = store
        self._max_turns = max(max_turns, 0)
        self._ttl = ttl

    async def load(self, user_id: str) -> list[HistoryTurn]:
        if not self._max_turns:
            return []
        try:
            raw = await self._store.get(history_key(user_id))
        except StoreError:
            return []
        if not raw:
            return []
        try:
            turns = [(str(item[0]), str(item[1])) for item in json.loads(raw)]
        except (json.JSONDecodeError, TypeError, IndexError, KeyError):
            return []
        return turns[-self._max_turns :]

    async def append(self, user_id: str, user_text: str, reply: str) -> None:
        if not self._max_turns:
            return
        turns = await self.load(user_id)
        turns.append((user_text, reply))
        payload = json.dumps([list(turn) for turn in turns[-self._max_turns :]], ensure_ascii=False)
        try:
            await self._store.set(history_key(user_id), payload, ttl=self._ttl)
        except StoreError:
            LOGGER.debug("History not saved", user_id=user_id)


def build_messages(
    user: UserRecord,
    text: str,
    history: Sequence[HistoryTurn] = (),
    *,
    max_turns: int = 6,
) -> list[dict[str, str]]:
    """Persona instruction, one context line, capped history and the new text."""

    call = user.call_name if user.consent else msg.DEFAULT_CALL
    tone = msg.TONE_LOVER if user.lover_mode else msg.TONE_FRIEND
    context = msg.PERSONA_CONTEXT.format(call=call, tone=tone, plan=msg.PLAN_NAMES[user.plan.value])
    messages = [{"role": "system", "content": f"{msg.PERSONA_PROMPT}\n{context}"}]
    recent = list(history)[-max_turns:] if max_turns > 0 else []
    for question, answer in recent:
        messages.append({"role": "user", "content": question})
        messages.append({"role": "assistant", "content": answer})
    messages.append({"role": "user", "content": text})
    return messages


def _is_rate_limit_body(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    error = data.get("error")
    if not isinstance(error, dict):
        return False
    descriptor = " ".join(str(error.get(field) or "") for field in ("code", "type", "message")).lower()
    return any(marker in descriptor for marker in _RATE_LIMIT_MARKERS)


class LanguageModelAdapter:
    """Generates free-form replies; every failure is reported as ``None``."""

    def __init__(
        self,
        config: LLMConfig,
        store: KeyValueStore,
        *,
        requester: Optional[Requester] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._requester = requester or _post_json
        self.breaker = CircuitBreaker(store, config.backoff_schedule, clock=clock)

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    async def generate(
        self, user: UserRecord, text: str, history: Sequence[HistoryTurn] = ()
    ) -> Optional[str]:
        if not self._config.enabled:
            return None
        remaining = await self.breaker.blackout_remaining()
        if remaining > 0:
            LOGGER.debug("Generation skipped, breaker open", payload={"remaining": round(remaining, 1)})
            return None

        messages = build_messages(user, text, history, max_turns=self._config.history_turns)
        try:
            reply = await asyncio.wait_for(
                with_generation_slot(self._complete(messages)),
                timeout=self._config.timeout_seconds,
            )
        except RateLimitedError as exc:
            blackout = await self.breaker.record_rate_limit()
            LOGGER.warning(
                "Generation rate limited, pausing",
                user_id=user.user_id,
                stage="LLM_RATE_LIMIT",
                payload={"blackout_s": blackout, "detail": str(exc)[:120]},
            )
            return None
        except asyncio.TimeoutError:
            LOGGER.warning("Generation timed out", user_id=user.user_id, stage="LLM_TIMEOUT")
            return None
        except GenerationError as exc:
            LOGGER.warning(
                "Generation failed",
                user_id=user.user_id,
                stage="LLM_ERROR",
                payload={"detail": str(exc)[:120]},
            )
            return None
        except Exception:
            LOGGER.exception("Unexpected generation failure", user_id=user.user_id, stage="LLM_ERROR")
            return None

        await self.breaker.record_success()
        return reply

    async def _complete(self, messages: list[dict[str, str]]) -> str:
        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self._config.model,
            "messages": messages,
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
        }
        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        try:
            status, body = await self._requester(url, payload, headers, self._config.timeout_seconds)
        except aiohttp.ClientError as exc:
            raise GenerationError(f"request failed: {exc}") from exc

        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError as exc:
            if status == 429:
                raise RateLimitedError("HTTP 429") from exc
            raise GenerationError(f"malformed JSON (status {status})") from exc

        if status == 429 or _is_rate_limit_body(data):
            raise RateLimitedError(f"status {status}")
        if status != 200:
            raise GenerationError(f"status {status}: {body[:120]}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError("response missing choices") from exc
        text = (content or "").strip() if isinstance(content, str) else ""
        if not text:
            raise GenerationError("empty completion")
        return text
