from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, Field


VoiceLiteral = Literal["Fenrir", "Puck", "Zephyr", "Nova", "Default"]
AspectLiteral = Literal["16:9", "1:1", "9:16"]


class AnalyzeRequest(BaseModel):
    """POST /api/analyze-script の入力。`text` も `script` の別名として受け付ける。"""

    script: str = Field(min_length=10, validation_alias=AliasChoices("script", "text"))
    style_name: str | None = Field(default=None, validation_alias=AliasChoices("styleName", "style_name"))
    timing_rule_seconds: int = Field(
        default=13, ge=4, le=30, validation_alias=AliasChoices("timingRuleSeconds", "timing_rule_seconds")
    )
    visual_prompt_suffix: str = Field(
        default="", validation_alias=AliasChoices("visualPromptSuffix", "visual_prompt_suffix")
    )


class ImageRequest(BaseModel):
    prompt: str = Field(min_length=5)
    suffix: str = ""
    aspect: AspectLiteral = "16:9"


class SpeechRequest(BaseModel):
    text: str = Field(min_length=1)
    voice: VoiceLiteral = "Default"
    speaking_rate: float = Field(
        default=1.0, ge=0.7, le=1.3, validation_alias=AliasChoices("speakingRate", "speaking_rate")
    )
