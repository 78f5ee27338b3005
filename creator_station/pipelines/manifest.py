from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from creator_station.pipelines.errors import ValidationError


MIN_SCENE_SEC = 1
MAX_SCENE_SEC = 60


class SceneManifestEntry(BaseModel):
    """1シーン分のタイミング指定（秒数と音声の有無）。"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    duration_sec: float = Field(ge=MIN_SCENE_SEC, le=MAX_SCENE_SEC, strict=True, allow_inf_nan=False)
    has_audio: bool = Field(default=False, alias="hasAudio", strict=True)


class Manifest(BaseModel):
    """
    シーン順に並んだマニフェスト。

    インデックス位置がそのままシーン番号になる（scene_id フィールドは持たない）。
    """

    model_config = ConfigDict(frozen=True)

    scenes: tuple[SceneManifestEntry, ...] = Field(min_length=1)

    def __len__(self) -> int:
        return len(self.scenes)

    @property
    def total_duration(self) -> float:
        return sum(s.duration_sec for s in self.scenes)


def parse_manifest(raw: Any) -> Manifest:
    """
    呼び出し側から受け取ったマニフェストを検証して `Manifest` を返す。

    Params:
        raw: JSON 文字列 / バイト列、またはデコード済みの JSON 値
    Returns:
        検証済みの Manifest
    Raises:
        ValidationError: 形が不正、秒数が [1, 60] の範囲外、scenes が空など
    """
    data = raw
    if isinstance(raw, (str, bytes, bytearray)):
        if not raw.strip():
            raise ValidationError("manifest", "is required")
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ValidationError("manifest", f"is not valid JSON ({e})") from e

    if not isinstance(data, dict):
        raise ValidationError("manifest", "must be a JSON object with a 'scenes' array")

    try:
        return Manifest.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "manifest"
        raise ValidationError(field, first.get("msg", "is invalid")) from e
