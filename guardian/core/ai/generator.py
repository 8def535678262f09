"""
Generator client and bounded call helper.

There is no module-level client. The run orchestrator constructs an
``OpenAIGeneratorClient`` (or receives any object satisfying
``GeneratorClient``), passes it into the engine and closes it when the run
ends. Every call goes through ``call_generator`` which enforces the timeout,
the retry budget and the rate-limit cooldown, and turns every failure into a
``GenerationError`` so it can be contained per candidate.
"""

from __future__ import annotations

import asyncio
import re
from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable

import openai
import structlog

from guardian.core.config import Settings, get_settings
from guardian.core.errors import GenerationError

logger = structlog.get_logger(__name__)

RATE_LIMIT_HINT = re.compile(r"rate.?limit|too many requests|\b429\b", re.I)

SYSTEM_PROMPT = (
    "You are a CI repair assistant. Reply with a single JSON object and "
    "nothing else. Never weaken tests, linters or security settings."
)


@runtime_checkable
class GeneratorClient(Protocol):
    """Anything that can turn a prompt into text."""

    async def complete(self, prompt: str) -> str: ...

    async def close(self) -> None: ...


class OpenAIGeneratorClient:
    """Chat-completions backed generator. One instance per run."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[openai.AsyncOpenAI] = None):
        self.settings = settings or get_settings()
        self.model = self.settings.generator_model
        if client is None:
            if not self.settings.openai_api_key:
                raise RuntimeError(
                    "OPENAI_API_KEY environment variable is not set. Please set it to your OpenAI API key."
                )
            # Retries and timeouts are handled by call_generator
            client = openai.AsyncOpenAI(api_key=self.settings.openai_api_key, max_retries=0)
        self._client: Optional[openai.AsyncOpenAI] = client

    @property
    def closed(self) -> bool:
        return self._client is None

    async def complete(self, prompt: str) -> str:
        if self._client is None:
            raise GenerationError("Generator client is closed")

        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.1,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()
            logger.debug("generator_client_closed", model=self.model)


def is_rate_limited(error: BaseException) -> bool:
    if isinstance(error, openai.RateLimitError):
        return True
    return bool(RATE_LIMIT_HINT.search(str(error)))


def _enclosing_task_cancelled() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


async def call_generator(
    client: GeneratorClient,
    prompt: str,
    *,
    settings: Optional[Settings] = None,
    label: str = "generator",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    """
    Call the generator with a timeout and a small retry budget.

    Timeouts wait ``timeout_cooldown_seconds`` before the next attempt and
    rate-limit errors wait ``rate_limit_cooldown_seconds``. Anything else,
    including an empty response, fails immediately.

    Raises:
        GenerationError: when no usable text was produced. A cancellation
            of the call itself is reported the same way; cancellation of
            the calling task is re-raised.
    """
    cfg = settings or get_settings()
    attempts = cfg.generator_max_attempts
    last_error = "no attempt made"

    for attempt in range(1, attempts + 1):
        cooldown = 0.0
        try:
            text = await asyncio.wait_for(client.complete(prompt), timeout=cfg.generator_timeout_seconds)
        except asyncio.CancelledError:
            if _enclosing_task_cancelled():
                raise
            logger.warning("generator_call_cancelled", label=label, attempt=attempt)
            raise GenerationError(f"Generator call cancelled ({label})") from None
        except asyncio.TimeoutError:
            last_error = f"timed out after {cfg.generator_timeout_seconds:g}s"
            cooldown = cfg.timeout_cooldown_seconds
            logger.warning("generator_timeout", label=label, attempt=attempt, max_attempts=attempts)
        except GenerationError:
            raise
        except Exception as e:
            if not is_rate_limited(e):
                logger.error("generator_call_failed", label=label, attempt=attempt, error=str(e))
                raise GenerationError(f"Generator call failed ({label}): {e}") from e
            last_error = f"rate limited: {e}"
            cooldown = cfg.rate_limit_cooldown_seconds
            logger.warning("generator_rate_limited", label=label, attempt=attempt, cooldown=cooldown)
        else:
            if not text or not text.strip():
                raise GenerationError(f"Generator returned an empty response ({label})")
            logger.debug("generator_call_succeeded", label=label, attempt=attempt, chars=len(text))
            return text

        if attempt < attempts and cooldown > 0:
            await sleep(cooldown)

    raise GenerationError(f"Generator unavailable after {attempts} attempt(s) ({label}): {last_error}")
