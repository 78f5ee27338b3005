from __future__ import annotations

from openai.types.chat import (
    ChatCompletionFunctionToolParam,
    ChatCompletionNamedToolChoiceParam,
)

"""
プロンプト定義モジュール

各関数はLLMへ渡すシステムプロンプト / ツール定義を返します。
"""


def scene_plan_system() -> str:
    """台本をシーン計画に分割するためのシステムプロンプト。"""
    return (
        "You are a YouTube production assistant. Convert the user's script into a scene plan. "
        "Split the script into scenes so that each scene's duration_sec is at most TIMING_RULE_SECONDS. "
        "Keep narration short and punchy for each scene; concatenated in order, the narration must read as one "
        "continuous voice-over without repeated introductions. "
        "on_screen_text is a short caption (a few words) for the scene. "
        "image_prompt MUST describe the scene visually (subjects, composition, lighting, mood) and MUST NOT "
        "include any style suffix; the server appends it later. "
        "Avoid markdown and commentary. Always answer by calling the provided function."
    )


def scene_plan_user(script: str, style_name: str | None, timing_rule_seconds: int) -> str:
    return (
        f"STYLE_NAME: {style_name or 'Unknown'}\n"
        f"TIMING_RULE_SECONDS: {timing_rule_seconds}\n\n"
        f"SCRIPT:\n{script}"
    )


def return_scene_plan_tool() -> ChatCompletionFunctionToolParam:
    """Function-calling tool schema for returning the scene plan.

    llm_service.analyze_script から参照されます。
    """
    return {
        "type": "function",
        "function": {
            "name": "return_scene_plan",
            "description": "台本を分割したシーン計画（タイトル、要約、各シーンのナレーション・画像プロンプト）を返す",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "動画タイトル"},
                    "summary": {"type": "string", "description": "台本全体の短い要約"},
                    "scenes": {
                        "type": "array",
                        "description": "シーン順の配列",
                        "items": {
                            "type": "object",
                            "properties": {
                                "scene_id": {"type": "integer", "description": "1 始まりの通し番号"},
                                "duration_sec": {
                                    "type": "number",
                                    "description": "シーンの長さ（秒）。TIMING_RULE_SECONDS 以下",
                                },
                                "narration": {"type": "string", "description": "読み上げるナレーション"},
                                "on_screen_text": {"type": "string", "description": "画面に出す短いテキスト"},
                                "image_prompt": {
                                    "type": "string",
                                    "description": "シーンの視覚的な描写（スタイル指定は含めない）",
                                },
                                "keywords": {
                                    "type": "array",
                                    "items": {"type": "string"},
                                    "description": "シーンのキーワード",
                                },
                            },
                            "required": [
                                "scene_id",
                                "duration_sec",
                                "narration",
                                "on_screen_text",
                                "image_prompt",
                                "keywords",
                            ],
                        },
                    },
                },
                "required": ["title", "summary", "scenes"],
            },
        },
    }


def return_scene_plan_tool_choice() -> ChatCompletionNamedToolChoiceParam:
    """tool_choice for the return_scene_plan function."""
    return {"type": "function", "function": {"name": "return_scene_plan"}}
