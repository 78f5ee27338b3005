from __future__ import annotations

import base64
import json
import time
from io import BytesIO
from typing import Optional, Any, cast, Dict, List
from urllib import request

from openai import OpenAI, OpenAIError
from PIL import Image, UnidentifiedImageError

from creator_station.config.settings import Settings, get_settings
from creator_station.services.errors import ServiceError
from creator_station.services.schemas import AspectLiteral, ImageRequest
from creator_station.utils.log import log, log_error


# 日本語コメント: 一過性の失敗に備えて最大3回まで試行
MAX_ATTEMPTS = 3
RETRY_DELAY_SEC = 0.8

ASPECT_SIZES: dict[str, tuple[int, int]] = {
    "16:9": (1280, 720),
    "1:1": (1024, 1024),
    "9:16": (768, 1365),
}


def aspect_to_size(aspect: AspectLiteral) -> tuple[int, int]:
    return ASPECT_SIZES.get(aspect, ASPECT_SIZES["16:9"])


def build_prompt(prompt: str, suffix: str = "") -> str:
    """シーンの画像プロンプトに共通のビジュアル指定（suffix）を付加する。"""
    return f"{prompt} {suffix}".strip() if suffix else prompt.strip()


def generate_image(req: ImageRequest, settings: Settings | None = None) -> bytes:
    """
    画像を生成してPNGのバイト列を返す（OpenRouter 経由の画像モデル）。

    引数:
        req: プロンプト・共通サフィックス・縦横比
    戻り値:
        PNG のバイト列。
    例外:
        ServiceError: 最大試行回数まで画像が得られなかった場合
    """
    s = settings or get_settings()
    w, h = aspect_to_size(req.aspect)
    prompt_with_size = f"{build_prompt(req.prompt, req.suffix)} --width {w} --height {h}"

    client = OpenAI(
        api_key=s.app_openrouter_api_key,
        base_url=s.app_openrouter_base_url,
    )

    last_error: Exception | None = None
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            resp = client.chat.completions.create(
                model=s.model_image,
                messages=[{"role": "user", "content": prompt_with_size}],
            )
            obj = cast(Dict[str, Any], resp.model_dump())
            b = _extract_image_bytes_from_response(obj)
            if b:
                log("[generate_image] attempt=", attempt, "bytes=", len(b))
                return _to_png(b)
            last_error = ServiceError("No image data found in response. Check model id/region.")
        except (OpenAIError, OSError, ValueError) as e:  # ネットワークやAPIの一過性の失敗、壊れた base64
            log_error("[generate_image] attempt", attempt, "failed:", repr(e))
            last_error = e
        if attempt < MAX_ATTEMPTS:
            time.sleep(RETRY_DELAY_SEC)

    if isinstance(last_error, ServiceError):
        raise last_error
    raise ServiceError("Image generation failed. Check server logs for details.") from last_error


def _to_png(data: bytes) -> bytes:
    """受け取った画像を PNG に正規化する（JPEG/WebP などで返るモデルがあるため）。"""
    try:
        with Image.open(BytesIO(data)) as img:
            with BytesIO() as buf:
                img.convert("RGB").save(buf, format="PNG")
                return buf.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise ServiceError("Image service returned data that is not an image.") from e


def _fetch_bytes(url: str, headers: Dict[str, str] | None = None) -> bytes:
    req = request.Request(url, headers=headers or {}, method="GET")
    with request.urlopen(req, timeout=30) as r:
        return r.read()


def _decode_data_url(url: str) -> Optional[bytes]:
    if url.startswith("data:") and "base64," in url:
        return base64.b64decode(url.split("base64,", 1)[1])
    return None


def _extract_image_bytes_from_response(obj: Dict[str, Any]) -> Optional[bytes]:
    # いくつかの候補パスを試す
    choices: List[Dict[str, Any]] = cast(List[Dict[str, Any]], obj.get("choices") or [])
    if not choices:
        return None
    message: Dict[str, Any] = cast(Dict[str, Any], choices[0].get("message") or {})
    images: List[Dict[str, Any]] = cast(List[Dict[str, Any]], message.get("images") or [])
    for im in images:
        inner_image: Dict[str, Any] = cast(Dict[str, Any], im.get("image") or {})
        b64_raw = im.get("b64_json") or inner_image.get("b64_json")
        if isinstance(b64_raw, str) and b64_raw:
            return base64.b64decode(b64_raw)
        url: Optional[str] = None
        if isinstance(im.get("image_url"), dict):
            url = cast(Optional[str], im["image_url"].get("url"))
        elif isinstance(inner_image.get("url"), str):
            url = cast(Optional[str], inner_image.get("url"))
        if url:
            return _decode_data_url(url) or _fetch_bytes(url)

    # テキスト中に JSON / data URL で埋め込まれているケース
    content = message.get("content")
    if isinstance(content, str) and content:
        if "base64," in content:
            tail = content.split("base64,", 1)[1]
            token = tail.split('"', 1)[0].split(")", 1)[0].strip()
            if token:
                return base64.b64decode(token)
        try:
            payload = json.loads(content)
        except ValueError:
            return None
        if isinstance(payload, dict) and isinstance(payload.get("data"), str):
            return base64.b64decode(payload["data"])
    return None
