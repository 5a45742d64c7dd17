"""Adapters from provider SDKs to the generation capability contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from loguru import logger

from ..config import ProviderConfig
from ..errors import (
    ConfigurationError,
    ContentBlockedError,
    GenerationError,
    InvalidInputError,
    QuotaExceededError,
    TransientGenerationError,
)


@dataclass
class SamplingParams:
    temperature: float = 0.7
    max_output_tokens: int = 8192
    model: str = ""


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, other: "Usage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens


@dataclass
class BackendResponse:
    text: str = ""
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = "stop"


def error_for_status(status_code: int | None, message: str) -> Exception:
    """Map an HTTP-ish status code onto the typed error hierarchy."""
    if status_code is None:
        return TransientGenerationError(message)
    if status_code == 429:
        return TransientGenerationError(message, status_code=429, throttled=True)
    if status_code in (408, 409) or 500 <= status_code <= 599:
        return TransientGenerationError(message, status_code=status_code, throttled=status_code == 503)
    if status_code in (401, 403, 404):
        return ConfigurationError(f"Provider rejected credentials or model ({status_code}): {message}")
    return InvalidInputError(f"Provider rejected request ({status_code}): {message}")


def _finish_reason(raw) -> str:
    name = str(getattr(raw, "name", raw) or "").upper()
    if name in ("MAX_TOKENS", "LENGTH"):
        return "length"
    if name in ("SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "CONTENT_FILTER", "RECITATION"):
        return "blocked"
    return "stop"


class Backend(ABC):
    name = "backend"
    default_model = ""

    @abstractmethod
    async def generate(self, system_prompt: str, user_prompt: str, params: SamplingParams) -> BackendResponse:
        ...

    @abstractmethod
    async def embed(self, texts: list[str], task_type: str, model: str, dimensions: int) -> list[list[float]]:
        ...


class GeminiBackend(Backend):
    """Gemini via the google-genai SDK's async surface."""

    name = "gemini"

    def __init__(self, api_key: str, model: str):
        if not api_key:
            raise ConfigurationError("Gemini API key is not configured")
        if not model:
            raise ConfigurationError("Gemini model is not configured")
        from google import genai

        self.default_model = model
        self._client = genai.Client(api_key=api_key)

    async def generate(self, system_prompt: str, user_prompt: str, params: SamplingParams) -> BackendResponse:
        from google.genai import errors, types

        try:
            response = await self._client.aio.models.generate_content(
                model=params.model or self.default_model,
                contents=user_prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=params.temperature,
                    max_output_tokens=params.max_output_tokens,
                ),
            )
        except errors.APIError as e:
            raise error_for_status(getattr(e, "code", None), str(e)) from e
        except ConnectionError as e:
            raise TransientGenerationError(f"Connection to Gemini failed: {e}") from e

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            raise ContentBlockedError(f"Prompt blocked: {feedback.block_reason}")

        candidates = getattr(response, "candidates", None) or []
        finish = _finish_reason(getattr(candidates[0], "finish_reason", None)) if candidates else "stop"
        text = response.text or ""
        if finish == "blocked" and not text:
            raise ContentBlockedError("Response blocked by provider safety filters")

        meta = getattr(response, "usage_metadata", None)
        usage = Usage(
            prompt_tokens=int(getattr(meta, "prompt_token_count", 0) or 0),
            completion_tokens=int(getattr(meta, "candidates_token_count", 0) or 0),
        )
        return BackendResponse(text=text, usage=usage, finish_reason=finish)

    async def embed(self, texts: list[str], task_type: str, model: str, dimensions: int) -> list[list[float]]:
        from google.genai import errors, types

        try:
            response = await self._client.aio.models.embed_content(
                model=model,
                contents=texts,
                config=types.EmbedContentConfig(task_type=task_type, output_dimensionality=dimensions),
            )
        except errors.APIError as e:
            raise error_for_status(getattr(e, "code", None), str(e)) from e
        except ConnectionError as e:
            raise TransientGenerationError(f"Connection to Gemini failed: {e}") from e
        return [list(e.values or []) for e in (response.embeddings or [])]


class OpenAICompatibleBackend(Backend):
    """Any OpenAI-compatible chat endpoint (OpenAI, DashScope, local servers)."""

    name = "openai"

    def __init__(self, api_key: str, model: str, base_url: str | None = None):
        if not api_key:
            raise ConfigurationError("OpenAI-compatible API key is not configured")
        if not model:
            raise ConfigurationError("OpenAI-compatible model is not configured")
        from openai import AsyncOpenAI

        self.default_model = model
        # Retries are ours, not the SDK's
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    @staticmethod
    def _map_error(e: Exception) -> Exception:
        import openai

        if isinstance(e, openai.RateLimitError):
            code = getattr(e, "code", None) or ""
            if code == "insufficient_quota":
                return QuotaExceededError(str(e))
            return TransientGenerationError(str(e), status_code=429, throttled=True)
        if isinstance(e, (openai.APITimeoutError, openai.APIConnectionError)):
            return TransientGenerationError(f"Connection failed: {e}")
        if isinstance(e, openai.APIStatusError):
            return error_for_status(e.status_code, str(e))
        return GenerationError(str(e))

    async def generate(self, system_prompt: str, user_prompt: str, params: SamplingParams) -> BackendResponse:
        import openai

        try:
            resp = await self._client.chat.completions.create(
                model=params.model or self.default_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=params.temperature,
                max_tokens=params.max_output_tokens,
            )
        except openai.OpenAIError as e:
            raise self._map_error(e) from e

        choices = getattr(resp, "choices", None) or []
        text = ""
        finish = "stop"
        if choices:
            msg = getattr(choices[0], "message", None)
            text = (getattr(msg, "content", "") or "") if msg is not None else ""
            finish = _finish_reason(getattr(choices[0], "finish_reason", None))
        if finish == "blocked" and not text:
            raise ContentBlockedError("Response blocked by provider content filter")
        usage_obj = getattr(resp, "usage", None)
        usage = Usage(
            prompt_tokens=int(getattr(usage_obj, "prompt_tokens", 0) or 0),
            completion_tokens=int(getattr(usage_obj, "completion_tokens", 0) or 0),
        )
        return BackendResponse(text=text, usage=usage, finish_reason=finish)

    async def embed(self, texts: list[str], task_type: str, model: str, dimensions: int) -> list[list[float]]:
        import openai

        try:
            resp = await self._client.embeddings.create(model=model, input=texts, dimensions=dimensions)
        except openai.OpenAIError as e:
            raise self._map_error(e) from e
        return [list(item.embedding) for item in resp.data]


def create_backend(config: ProviderConfig, model: str = "") -> Backend:
    """Build the backend named in the provider config."""
    chosen = model or config.model
    logger.debug(f"Creating {config.provider} backend for model {chosen}")
    if config.provider == "gemini":
        return GeminiBackend(api_key=config.api_key, model=chosen)
    if config.provider == "openai":
        return OpenAICompatibleBackend(api_key=config.api_key, model=chosen, base_url=config.base_url)
    raise ConfigurationError(f"Unknown provider '{config.provider}'")
