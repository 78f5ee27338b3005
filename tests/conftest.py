from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from creator_station.config.settings import Settings
from creator_station.pipelines.workspace import UploadedFile

# .env 読み込み（pytest 実行時）
from dotenv import load_dotenv, find_dotenv

_env_path = find_dotenv(filename=".env", raise_error_if_not_found=False, usecwd=True)
if _env_path:
    load_dotenv(_env_path, override=False)


def pytest_load_initial_conftests(args, early_config, parser):
    """pytest起動直後に必ず呼ばれるフック。ここでPYTEST=1を設定する。"""
    os.environ["PYTEST"] = "1"


os.environ.setdefault("PYTEST", "1")


@pytest.fixture
def render_root(tmp_path: Path) -> Path:
    """ワークスペースの作成先（テストごとに独立）。"""
    root = tmp_path / "render"
    root.mkdir()
    return root


@pytest.fixture
def settings(render_root: Path) -> Settings:
    return Settings(
        render_tmp_dir=str(render_root),
        archive_bucket=None,
        render_max_workers=1,
        strict_scene_order=True,
        disable_tts=False,
        analyze_dry_run=False,
        ffmpeg_binary="ffmpeg",
        ffprobe_binary="ffprobe",
        ffmpeg_timeout_seconds=120.0,
    )


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    d = tmp_path / "uploads"
    d.mkdir()
    return d


@pytest.fixture
def make_upload(uploads_dir: Path) -> Callable[..., UploadedFile]:
    """アップロード済みファイルを模したファイルを作る。"""
    counter = {"n": 0}

    def _make(filename: str, data: bytes | None = None) -> UploadedFile:
        counter["n"] += 1
        path = uploads_dir / f"upload-{counter['n']:04d}"
        path.write_bytes(data if data is not None else filename.encode("utf-8"))
        return UploadedFile(filename=filename, path=path)

    return _make


@pytest.fixture
def png_bytes() -> Callable[..., bytes]:
    def _png(color: str = "red", size: tuple[int, int] = (640, 480)) -> bytes:
        from io import BytesIO

        buf = BytesIO()
        Image.new("RGB", size, color).save(buf, format="PNG")
        return buf.getvalue()

    return _png
