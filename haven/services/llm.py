"""
LLM Client - thin wrapper over the OpenAI async client.

Used for therapy chat replies and mood classification.
"""

import time
from collections.abc import Sequence

from openai import AsyncOpenAI, OpenAIError
from structlog import get_logger

from haven.config import settings
from haven.exceptions import LLMProviderError
from haven.models.domain import ConversationTurn
from haven.observability import metrics

logger = get_logger(__name__)


class LLMClient:
    """Chat-completion client with latency metrics and typed errors."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def complete(
        self,
        messages: Sequence[ConversationTurn],
        model: str,
        operation: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """
        Run a chat completion and return the reply text.

        Raises:
            LLMProviderError: If the API call fails or returns no content
        """
        start = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": m.role.value, "content": m.content} for m in messages],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except OpenAIError as exc:
            metrics.record_error(type(exc).__name__, operation)
            logger.error(
                "llm_request_failed",
                operation=operation,
                model=model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise LLMProviderError(str(exc)) from exc
        finally:
            metrics.record_llm_request(operation, time.perf_counter() - start)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMProviderError("Empty completion")

        logger.debug(
            "llm_request_completed",
            operation=operation,
            model=model,
            total_tokens=response.usage.total_tokens if response.usage else None,
        )
        return content


_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """FastAPI dependency returning the process-wide LLM client."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
    return _llm_client
