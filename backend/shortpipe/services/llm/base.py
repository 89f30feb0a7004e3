"""Abstract base class for LLM provider adapters."""

from abc import ABC, abstractmethod
from typing import Optional, Type

from pydantic import BaseModel


class LLMAdapter(ABC):
    """Async structured-output text generation.

    Implementations return a validated instance of the caller-supplied
    schema class.
    """

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
    ) -> BaseModel:
        """Generate structured text output from a prompt.

        Args:
            prompt: The user prompt to send to the model.
            schema: Pydantic model class defining the expected output structure.
            temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
            system_prompt: Optional system/instruction prompt.

        Returns:
            Validated instance of the supplied schema class.
        """
        ...
