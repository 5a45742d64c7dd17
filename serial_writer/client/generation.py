"""Rate-limited, retrying client in front of a generation backend."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from ..config import AppConfig, RetryConfig
from ..errors import (
    ContentBlockedError,
    InvalidInputError,
    RetryExhaustedError,
    TransientGenerationError,
)
from .backends import Backend, SamplingParams, Usage, create_backend
from .rate_limiter import TokenBucket

_T = TypeVar("_T")


@dataclass
class GenerationResult:
    text: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = "stop"
    attempts: int = 1

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


@dataclass
class CallLog:
    label: str = ""
    prompt_preview: str = ""
    response_preview: str = ""
    elapsed_seconds: float = 0.0
    attempts: int = 1


class GenerationClient:
    """Turns (prompt, sampling params) into text, hiding transient failures.

    Every attempt takes one permit from the shared token bucket and runs
    under a hard wall-clock timeout. Timeouts, throttling and unavailable
    responses are retried with exponential backoff; anything else is raised
    immediately. When the budget runs out a RetryExhaustedError carries the
    last underlying failure.
    """

    def __init__(
        self,
        backend: Backend,
        rate_limiter: TokenBucket | None = None,
        retry: RetryConfig | None = None,
        throttle_penalty: int = 10,
        embedding_model: str = "gemini-embedding-001",
        embedding_dimensions: int = 768,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.rate_limiter = rate_limiter or TokenBucket()
        self.retry = retry or RetryConfig()
        self.throttle_penalty = throttle_penalty
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions
        self._sleep = sleep
        self.usage = Usage()
        self.logs: list[CallLog] = []

    @classmethod
    def from_config(cls, config: AppConfig, backend: Backend | None = None, **kwargs) -> "GenerationClient":
        limiter = TokenBucket.per_minute(
            config.rate_limit.permits_per_minute,
            capacity=config.rate_limit.capacity,
        )
        return cls(
            backend=backend or create_backend(config.provider),
            rate_limiter=limiter,
            retry=config.retry,
            throttle_penalty=config.rate_limit.throttle_penalty,
            embedding_model=config.provider.embedding_model,
            embedding_dimensions=config.provider.embedding_dimensions,
            **kwargs,
        )

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry `retry_number` (1-based)."""
        return min(self.retry.max_delay, self.retry.base_delay * (2 ** (retry_number - 1)))

    async def _call_with_retry(self, label: str, fn: Callable[[], Awaitable[_T]]) -> tuple[_T, int]:
        max_attempts = self.retry.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            await self.rate_limiter.acquire()
            try:
                result = await asyncio.wait_for(fn(), timeout=self.retry.timeout_seconds)
                return result, attempt
            except asyncio.TimeoutError:
                last_error = TransientGenerationError(
                    f"{label} timed out after {self.retry.timeout_seconds:g}s"
                )
            except TransientGenerationError as e:
                last_error = e
                if e.throttled:
                    self.rate_limiter.penalize(self.throttle_penalty)

            if attempt >= max_attempts:
                break
            delay = self.backoff_delay(attempt)
            logger.warning(
                f"Retry {attempt}/{self.retry.max_retries} for {label} after {last_error}, "
                f"waiting {delay:.1f}s"
            )
            await self._sleep(delay)

        raise RetryExhaustedError(
            f"{label} failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
            last_error=last_error,
        )

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        params: SamplingParams | None = None,
        label: str = "generate",
    ) -> GenerationResult:
        params = params or SamplingParams()

        async def _attempt():
            response = await self.backend.generate(system_prompt, user_prompt, params)
            if not response.text or not response.text.strip():
                raise TransientGenerationError(f"{label} returned empty text")
            return response

        start = time.monotonic()
        response, attempts = await self._call_with_retry(label, _attempt)
        elapsed = time.monotonic() - start

        self.usage.add(response.usage)
        self.logs.append(
            CallLog(
                label=label,
                prompt_preview=user_prompt[:200],
                response_preview=response.text[:200],
                elapsed_seconds=round(elapsed, 2),
                attempts=attempts,
            )
        )
        logger.debug(
            f"{label}: {response.usage.completion_tokens} output tokens, "
            f"finish={response.finish_reason}, {elapsed:.1f}s"
        )
        return GenerationResult(
            text=response.text,
            usage=response.usage,
            finish_reason=response.finish_reason,
            attempts=attempts,
        )

    async def embed(self, texts: list[str], task_type: str = "RETRIEVAL_DOCUMENT") -> list[list[float] | None]:
        """Embed texts in batches. A failed batch yields None for each of its items."""
        results: list[list[float] | None] = []
        batch_size = self.retry.embedding_batch_size
        max_chars = self.retry.embedding_max_chars
        for start in range(0, len(texts), batch_size):
            batch = [t[:max_chars] for t in texts[start:start + batch_size]]

            async def _attempt(batch=batch):
                return await self.backend.embed(
                    batch, task_type, self.embedding_model, self.embedding_dimensions
                )

            try:
                vectors, _ = await self._call_with_retry("embed", _attempt)
            except (RetryExhaustedError, InvalidInputError, ContentBlockedError) as e:
                logger.error(f"Embedding batch at {start} failed: {e}")
                results.extend([None] * len(batch))
                continue

            for i in range(len(batch)):
                vector = vectors[i] if i < len(vectors) else None
                if not vector or len(vector) != self.embedding_dimensions:
                    logger.warning(f"Invalid embedding for item {start + i}, storing null")
                    results.append(None)
                else:
                    results.append(vector)
        return results
