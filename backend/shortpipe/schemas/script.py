"""Pydantic schemas for the script stage's structured LLM output.

The model returns a list of scenes, each pairing narration text with a
realistic image prompt for the matching visual.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field


def _coerce_to_str(v: Any) -> str:
    """Coerce list values to a space-joined string.

    Models occasionally split one sentence of narration into an array.
    """
    if isinstance(v, list):
        return " ".join(str(item) for item in v)
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]


class ScriptScene(BaseModel):
    """One narrated beat of the short and its visual."""

    content_text: CoercedStr = Field(
        description="Narration spoken during this scene, one or two sentences"
    )
    image_prompt: CoercedStr = Field(
        description="Realistic, detailed image generation prompt for this scene's visual"
    )


class ScriptOutput(BaseModel):
    """Complete script for a roughly 30 second vertical video."""

    content: list[ScriptScene] = Field(
        min_length=1,
        description="Scenes in playback order",
    )

    @property
    def narration(self) -> str:
        return " ".join(scene.content_text.strip() for scene in self.content)

    @property
    def image_prompts(self) -> list[str]:
        return [scene.image_prompt for scene in self.content]

