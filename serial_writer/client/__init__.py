from .backends import (
    Backend,
    BackendResponse,
    GeminiBackend,
    OpenAICompatibleBackend,
    SamplingParams,
    Usage,
    create_backend,
)
from .generation import CallLog, GenerationClient, GenerationResult
from .rate_limiter import TokenBucket

__all__ = [
    "Backend",
    "BackendResponse",
    "GeminiBackend",
    "OpenAICompatibleBackend",
    "SamplingParams",
    "Usage",
    "create_backend",
    "CallLog",
    "GenerationClient",
    "GenerationResult",
    "TokenBucket",
]
