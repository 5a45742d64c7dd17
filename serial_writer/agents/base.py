"""Agent roles and the one call every role goes through."""

from dataclasses import dataclass
from enum import Enum

from ..client import GenerationClient, GenerationResult, SamplingParams
from ..utils.text import parse_json_response

LANGUAGE_NAMES = {"en": "English", "vi": "Vietnamese", "zh": "Chinese"}
TRUE_WORDS = {"true", "yes", "y", "1"}
FALSE_WORDS = {"false", "no", "n", "0"}


class AgentRole(str, Enum):
    ARCHITECT = "architect"
    WRITER = "writer"
    CRITIC = "critic"
    ANALYST = "analyst"


@dataclass(frozen=True)
class AgentSpec:
    role: AgentRole
    system_prompt: str
    temperature: float
    max_output_tokens: int = 8192
    json_output: bool = False


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def as_bool(value, default=None):
    """Read a JSON flag that may arrive as a bool, a number or a string like "false"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_WORDS:
            return True
        if lowered in FALSE_WORDS:
            return False
    return default


async def run_agent(
    client: GenerationClient,
    spec: AgentSpec,
    prompt: str,
    model: str = "",
    temperature: float | None = None,
    label: str | None = None,
) -> GenerationResult:
    system = spec.system_prompt
    if spec.json_output:
        system += "\n\nRespond with valid JSON only."
    params = SamplingParams(
        temperature=spec.temperature if temperature is None else temperature,
        max_output_tokens=spec.max_output_tokens,
        model=model,
    )
    return await client.generate(system, prompt, params, label=label or spec.role.value)


async def run_agent_json(
    client: GenerationClient,
    spec: AgentSpec,
    prompt: str,
    model: str = "",
    label: str | None = None,
) -> tuple[dict | list, GenerationResult]:
    """Call the agent and parse JSON from its reply.

    Raises ValueError when no JSON can be recovered.
    """
    result = await run_agent(client, spec, prompt, model=model, label=label)
    return parse_json_response(result.text), result
