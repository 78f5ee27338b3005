from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from creator_station.config.settings import Settings, get_settings
from creator_station.pipelines import compose_video
from creator_station.pipelines.compose_video import Segment
from creator_station.pipelines.errors import ValidationError
from creator_station.pipelines.manifest import Manifest, parse_manifest
from creator_station.pipelines.workspace import StagedInputs, UploadedFile, Workspace
from creator_station.storage import gcs
from creator_station.utils.log import log, log_error


OUTPUT_FILENAME = "creator-station.mp4"


@dataclass(frozen=True)
class RenderResult:
    """連結後の最終動画。data の所有権は呼び出し側へ移る。"""
    data: bytes
    scene_count: int
    expected_duration: float
    archive_url: str | None = None


@dataclass(frozen=True)
class _SceneJob:
    index: int
    image: Path
    audio: Path | None
    duration_sec: float
    output_path: Path


def _plan_jobs(manifest: Manifest, staged: StagedInputs, segments_dir: Path) -> list[_SceneJob]:
    n = len(manifest)
    if len(staged.audios) > n:
        log_error(f"[render] {len(staged.audios) - n} extra audio file(s) ignored (scenes={n})")

    jobs: list[_SceneJob] = []
    for i, entry in enumerate(manifest.scenes):
        audio = staged.audios[i].path if i < len(staged.audios) else None
        if entry.has_audio != (audio is not None):
            # マニフェストの hasAudio と実際の音声有無が食い違っても処理は続行（音声ファイル側を優先）
            log_error(f"[render] scene {i}: hasAudio={entry.has_audio} but audio file present={audio is not None}")
        jobs.append(
            _SceneJob(
                index=i,
                image=staged.images[i].path,
                audio=audio,
                duration_sec=entry.duration_sec,
                output_path=segments_dir / f"seg_{i:03d}.mp4",
            )
        )
    return jobs


def _encode(job: _SceneJob, settings: Settings) -> Segment:
    return compose_video.encode_segment(
        job.image,
        job.audio,
        job.duration_sec,
        job.output_path,
        scene_index=job.index,
        settings=settings,
    )


def _encode_all(jobs: Sequence[_SceneJob], settings: Settings) -> list[Segment]:
    """
    全シーンをエンコードする。

    既定は逐次実行で、最初の失敗で打ち切る。
    RENDER_MAX_WORKERS > 1 の場合はスレッドプールで並列化するが、
    結果はシーン順に回収し、シーン番号が最も小さい失敗を送出する。
    """
    if settings.render_max_workers <= 1 or len(jobs) <= 1:
        return [_encode(job, settings) for job in jobs]

    with ThreadPoolExecutor(max_workers=settings.render_max_workers, thread_name_prefix="encode") as pool:
        futures: list[Future[Segment]] = [pool.submit(_encode, job, settings) for job in jobs]
        segments: list[Segment] = []
        try:
            for fut in futures:
                segments.append(fut.result())
        except BaseException:
            for fut in futures:
                fut.cancel()
            raise
    return segments


def _archive(output: Path, settings: Settings) -> str | None:
    if not settings.archive_bucket:
        return None
    key = f"renders/{output.parent.name}/{OUTPUT_FILENAME}"
    try:
        gcs.upload_file(key, str(output), content_type="video/mp4", settings=settings)
        return gcs.signed_url(key, settings=settings)
    except Exception as e:  # アーカイブ失敗はレンダリング結果に影響させない
        log_error("[render] archive upload failed:", repr(e))
        return None


def render_in_workspace(
    ws: Workspace,
    images: Sequence[UploadedFile],
    audios: Sequence[UploadedFile],
    manifest_raw: Any,
    settings: Settings | None = None,
) -> RenderResult:
    """
    開いているワークスペース上でレンダリングを実行する。

    Received -> Validated -> Staged -> Encoding(0..N-1) -> Concatenated -> Delivered
    どの段階で失敗しても最初の例外をそのまま送出する（部分的な動画は返さない）。
    ワークスペースの後始末は呼び出し側の `with` が担う。
    """
    s = settings or get_settings()
    images = ws.adopt(images)
    audios = ws.adopt(audios)

    manifest = parse_manifest(manifest_raw)
    if len(images) != len(manifest):
        raise ValidationError("images", f"count ({len(images)}) must match scenes ({len(manifest)})")

    staged = ws.stage(images, audios)
    jobs = _plan_jobs(manifest, staged, ws.segments_dir)
    log(f"[render] scenes={len(jobs)} audios={len(staged.audios)} workers={s.render_max_workers}")

    segments = _encode_all(jobs, s)

    output = compose_video.concatenate([seg.path for seg in segments], ws.path("output.mp4"), settings=s)
    data = output.read_bytes()

    return RenderResult(
        data=data,
        scene_count=len(segments),
        expected_duration=round(sum(seg.expected_duration for seg in segments), 3),
        archive_url=_archive(output, s),
    )


def render_video(
    images: Sequence[UploadedFile],
    audios: Sequence[UploadedFile],
    manifest_raw: Any,
    settings: Settings | None = None,
) -> RenderResult:
    """
    画像・音声・マニフェストから MP4 を1本作る。

    Params:
        images: シーンごとの画像（1シーン1枚、ファイル名のバイト順がシーン順）
        audios: シーンごとのナレーション音声（0本〜シーン数）
        manifest_raw: {"scenes": [{"duration_sec": number, "hasAudio": bool}, ...]}
    Returns:
        RenderResult（最終動画のバイト列など）
    備考:
        一時ファイルと受け取ったアップロードファイルは、成功/失敗に関わらず削除される。
    """
    s = settings or get_settings()
    with Workspace(s) as ws:
        return render_in_workspace(ws, images, audios, manifest_raw, settings=s)
