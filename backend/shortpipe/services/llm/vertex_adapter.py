"""Vertex AI adapter for the LLM abstraction layer.

Wraps a google-genai client with structured output. Transient failures are
retried with tenacity; anything else propagates to the stage.
"""

import logging
from typing import Optional, Type

from google import genai
from google.genai import types as genai_types
from pydantic import BaseModel

from shortpipe.services.llm.base import LLMAdapter
from shortpipe.services.transient import vendor_retry

logger = logging.getLogger(__name__)


class VertexAIAdapter(LLMAdapter):
    """LLM adapter backed by Google Vertex AI (google-genai SDK)."""

    def __init__(self, client: genai.Client, model_id: str, *, max_retries: int | None = None) -> None:
        self._client = client
        self._model_id = model_id
        self._max_retries = max_retries

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
    ) -> BaseModel:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=schema,
            system_instruction=system_prompt,
        )

        @vendor_retry(self._max_retries)
        async def _call() -> BaseModel:
            response = await self._client.aio.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=config,
            )
            return schema.model_validate_json(response.text)

        result = await _call()
        logger.debug(f"{self._model_id} returned {type(result).__name__}")
        return result
