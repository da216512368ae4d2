import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .errors import InitializationError, NetworkError

log = logging.getLogger(__name__)


@dataclass
class LLMReply:
    content: Any


class ChatModel:
    """OpenAI-compatible chat model; resolves the model id at startup when unset."""

    def __init__(
        self,
        *,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 1.0,
    ) -> None:
        if not api_key:
            raise InitializationError("OPENAI_API_KEY environment variable is not set.")
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url or None)
        self.model = model
        self.temperature = temperature

    async def initialize(self) -> None:
        if self.model:
            return
        try:
            page = await self.client.models.list()
        except Exception as exc:
            raise InitializationError(f"failed to list models: {exc}") from exc
        models = [item.id for item in page.data]
        if not models:
            raise InitializationError("No models found at the LLM endpoint.")
        log.info("Available models: %s", models)
        self.model = models[0]

    async def invoke(self, messages: List[Dict[str, str]]) -> LLMReply:
        if not self.model:
            raise NetworkError("LLM not initialized yet. Call initialize() first.")
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
            )
        except Exception as exc:
            raise NetworkError(str(exc)) from exc
        return LLMReply(content=response.choices[0].message.content)

    async def close(self) -> None:
        await self.client.close()
