from __future__ import annotations

import json
from typing import Any, TypedDict

from openai import OpenAI, OpenAIError
from openai.types.chat import ChatCompletionToolParam

from creator_station.config.settings import Settings, get_settings
from creator_station.services.errors import ServiceError
from creator_station.services.schemas import AnalyzeRequest
from creator_station.utils.log import log, log_error
from prompts import (
    return_scene_plan_tool,
    return_scene_plan_tool_choice,
    scene_plan_system,
    scene_plan_user,
)


MAX_KEYWORDS = 12


class PlannedScene(TypedDict):
    """シーン計画の1要素。"""
    scene_id: int
    duration_sec: float
    narration: str
    on_screen_text: str
    image_prompt: str
    keywords: list[str]


class ScenePlan(TypedDict):
    title: str
    summary: str
    scenes: list[PlannedScene]


def _client(s: Settings) -> OpenAI:
    return OpenAI(api_key=s.openai_api_key, base_url=s.openai_base_url)


def analyze_script(req: AnalyzeRequest, settings: Settings | None = None) -> ScenePlan:
    """
    LLMを用いて台本をシーン計画（タイトル/要約/シーン配列）へ変換する。

    Params:
        req: 台本と分割ルール（1シーンの最大秒数など）
    Returns:
        正規化済みの ScenePlan。各シーンの duration_sec は timing_rule_seconds 以下に丸める。
    Raises:
        ServiceError: API 呼び出しの失敗、または応答から JSON を取り出せない場合
    """
    s = settings or get_settings()
    client = _client(s)

    system = scene_plan_system()
    user = scene_plan_user(req.script, req.style_name, req.timing_rule_seconds)
    tools: list[ChatCompletionToolParam] = [return_scene_plan_tool()]

    try:
        resp = client.chat.completions.create(
            model=s.model_llm,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0.4,
            max_tokens=2048,
            tools=tools,
            tool_choice=return_scene_plan_tool_choice(),
        )
    except OpenAIError as e:
        log_error("[analyze_script] openai error:", repr(e))
        raise ServiceError("Script analysis failed. Check server logs for details.") from e

    choice = resp.choices[0]
    tool_calls = choice.message.tool_calls or []
    if tool_calls:
        # Be defensive across OpenAI SDK versions: prefer duck-typing.
        func = getattr(tool_calls[0], "function", None)
        raw = getattr(func, "arguments", None) or "{}"
        log("[analyze_script/tools] args=\n", raw)
    else:
        raw = choice.message.content or ""
        log("[analyze_script/fallback] raw=\n", raw)

    data = _extract_json_object(raw)
    return normalize_scene_plan(data, req.timing_rule_seconds)


def _extract_json_object(text: str) -> dict[str, Any]:
    """モデルが余計な文字を付けても、最外の {...} を JSON として取り出す。"""
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        raise ServiceError("Model did not return JSON.")
    try:
        data = json.loads(text[start : end + 1])
    except ValueError as e:
        raise ServiceError("Failed to parse model JSON. Try again.") from e
    if not isinstance(data, dict):
        raise ServiceError("Model did not return a JSON object.")
    return data


def _as_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        f = float(value)
    except (TypeError, ValueError):
        return default
    return f if f == f and f > 0 else default


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_scene_plan(data: dict[str, Any], timing_rule_seconds: int) -> ScenePlan:
    """返却データを厳密な ScenePlan へ正規化する。"""
    scenes_raw = data.get("scenes")
    scenes: list[PlannedScene] = []
    if isinstance(scenes_raw, list):
        for idx, item in enumerate(scenes_raw):
            if not isinstance(item, dict):
                continue
            keywords = item.get("keywords")
            scenes.append(
                PlannedScene(
                    scene_id=_as_int(item.get("scene_id"), idx + 1),
                    duration_sec=min(
                        _as_float(item.get("duration_sec"), timing_rule_seconds), float(timing_rule_seconds)
                    ),
                    narration=str(item.get("narration") or ""),
                    on_screen_text=str(item.get("on_screen_text") or ""),
                    image_prompt=str(item.get("image_prompt") or ""),
                    keywords=[str(k) for k in keywords][:MAX_KEYWORDS] if isinstance(keywords, list) else [],
                )
            )

    return ScenePlan(
        title=str(data.get("title") or ""),
        summary=str(data.get("summary") or ""),
        scenes=scenes,
    )
