"""LLM provider abstraction layer.

Usage:
    from shortpipe.services.llm import VertexAIAdapter

    adapter = VertexAIAdapter(client, "gemini-2.5-flash")
    result = await adapter.generate_text(prompt, ScriptOutput)
"""

from shortpipe.services.llm.base import LLMAdapter
from shortpipe.services.llm.vertex_adapter import VertexAIAdapter

__all__ = ["LLMAdapter", "VertexAIAdapter"]
