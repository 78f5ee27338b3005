from __future__ import annotations

import json
import shutil
from pathlib import Path

import ffmpeg
import pytest

from creator_station.pipelines.render import render_video


# 日本語コメント: このテストは実際の FFmpeg / FFprobe バイナリを使用します。
# 見つからない環境ではスキップします。

FRAME = 1 / 30


def require_ffmpeg() -> None:
    """ffmpeg / ffprobe が無い環境では実エンコードのテストをスキップする。"""
    if not (shutil.which("ffmpeg") and shutil.which("ffprobe")):
        pytest.skip("ffmpeg / ffprobe が見つからないためスキップ")


def _tone(path: Path, seconds: float) -> Path:
    """lavfi の sine から指定秒数の WAV を作る。"""
    (
        ffmpeg
        .input(f"sine=frequency=440:duration={seconds}", f="lavfi")
        .output(str(path), acodec="pcm_s16le", ar="48000", ac="1")
        .overwrite_output()
        .run(quiet=True)
    )
    return path


def _probe(path: Path) -> tuple[float, int, int]:
    info = ffmpeg.probe(str(path))
    video = next(s for s in info["streams"] if s.get("codec_type") == "video")
    return float(info["format"]["duration"]), int(video["width"]), int(video["height"])


def test_single_silent_scene(settings, make_upload, png_bytes, tmp_path: Path, render_root: Path):
    """
    テスト概要: 1シーン5秒・音声なし -> 1280x720 の5秒動画になることを確認します。
    実行例: pytest -s tests/test_render_ffmpeg.py -k "test_single_silent_scene"
    """
    require_ffmpeg()
    images = [make_upload("scene_001.png", png_bytes("red", (800, 800)))]
    manifest = json.dumps({"scenes": [{"duration_sec": 5, "hasAudio": False}]})

    result = render_video(images, [], manifest, settings=settings)

    out = tmp_path / "out.mp4"
    out.write_bytes(result.data)
    duration, width, height = _probe(out)
    assert (width, height) == (1280, 720)
    assert abs(duration - 5.0) <= FRAME + 0.05
    assert list(render_root.iterdir()) == []


def test_three_scenes_with_narration(settings, make_upload, png_bytes, tmp_path: Path, render_root: Path):
    """
    テスト概要: 3シーン [5, 8, 6] 秒、音声 [5, 10, 6] 秒 -> 合計およそ19秒。
    2シーン目は音声が長いので指定秒数で打ち切られる。
    """
    require_ffmpeg()
    colors = ["red", "green", "blue"]
    images = [make_upload(f"scene_{i:03d}.png", png_bytes(c)) for i, c in enumerate(colors, start=1)]
    audios = [
        make_upload(f"scene_{i:03d}.wav", _tone(tmp_path / f"tone_{i}.wav", sec).read_bytes())
        for i, sec in enumerate([5, 10, 6], start=1)
    ]
    manifest = json.dumps({"scenes": [{"duration_sec": d, "hasAudio": True} for d in (5, 8, 6)]})

    result = render_video(images, audios, manifest, settings=settings)

    assert result.scene_count == 3
    assert result.expected_duration == pytest.approx(19.0, abs=0.1)
    out = tmp_path / "out.mp4"
    out.write_bytes(result.data)
    duration, width, height = _probe(out)
    assert (width, height) == (1280, 720)
    assert duration == pytest.approx(19.0, abs=0.5)
    assert list(render_root.iterdir()) == []
