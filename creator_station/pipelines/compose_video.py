from __future__ import annotations

import json
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import ffmpeg as _ffmpeg  # type: ignore

from creator_station.config.settings import Settings, get_settings
from creator_station.pipelines.errors import (
    ConcatError,
    EncodeError,
    RenderTimeoutError,
    stderr_excerpt,
)
from creator_station.utils.log import log, log_error

ffmpeg: Any = _ffmpeg

# 出力は 1280x720 / 30fps 固定（全セグメントで同一パラメータにして無劣化連結を可能にする）
CANVAS_WIDTH = 1280
CANVAS_HEIGHT = 720
OUTPUT_FPS = 30

_QUIET_ARGS = ("-hide_banner", "-loglevel", "error", "-nostats")


@dataclass(frozen=True)
class Segment:
    """1シーン分の中間動画。"""
    index: int
    path: Path
    expected_duration: float
    has_audio: bool


def _probe_audio_duration_sec(path: str, settings: Settings, stage: str = "probe audio") -> float | None:
    """
    ffprobe を用いて音声の長さ（秒）を取得します。取得できなければ None。

    ffmpeg.probe には待ち時間の上限が無いため、同じ引数で ffprobe を直接起動し、
    settings.ffmpeg_timeout_seconds を超えたら kill して RenderTimeoutError。
    """
    args = [settings.ffprobe_binary, "-show_format", "-show_streams", "-of", "json", path]
    timeout = settings.ffmpeg_timeout_seconds if settings.ffmpeg_timeout_seconds > 0 else None
    try:
        proc = subprocess.run(args, capture_output=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise RenderTimeoutError(stage, timeout or 0.0) from e
    except OSError as e:
        log_error(f"[ffprobe] could not start {settings.ffprobe_binary}: {e}")
        return None
    if proc.returncode != 0:
        log_error(f"[ffprobe] exit={proc.returncode} stderr=\n{proc.stderr.decode('utf-8', errors='replace')}")
        return None
    try:
        info = json.loads(proc.stdout)
    except ValueError:
        log_error("[ffprobe] output is not JSON:", path)
        return None
    if not isinstance(info, dict):
        return None

    # format > duration が最も信頼できる
    fmt = info.get("format") or {}
    dur = fmt.get("duration")
    if isinstance(dur, str):
        try:
            return max(0.0, round(float(dur), 3))
        except ValueError:
            pass

    # stream 側の duration をフォールバックで探す
    for st in info.get("streams", []) or []:
        if st.get("codec_type") == "audio":
            sd = st.get("duration")
            if isinstance(sd, str):
                try:
                    return max(0.0, round(float(sd), 3))
                except ValueError:
                    continue
    return None


def _run(stream: Any, settings: Settings, stage: str) -> tuple[int | None, str]:
    """
    ffmpeg-python のストリームを実行し、(終了コード, stderr) を返す。

    - 待ち時間は settings.ffmpeg_timeout_seconds で打ち切り、プロセスを kill して RenderTimeoutError
    - バイナリが起動できない場合は終了コード None
    """
    args = stream.compile(cmd=settings.ffmpeg_binary)
    log(f"[ffmpeg/{stage}]", " ".join(args))
    timeout = settings.ffmpeg_timeout_seconds if settings.ffmpeg_timeout_seconds > 0 else None
    try:
        proc = stream.run_async(cmd=settings.ffmpeg_binary, pipe_stdout=True, pipe_stderr=True)
    except OSError as e:
        return None, f"{settings.ffmpeg_binary}: {e}"
    try:
        _, err = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        proc.kill()
        proc.communicate()
        raise RenderTimeoutError(stage, timeout or 0.0) from e
    return proc.returncode, (err or b"").decode("utf-8", errors="replace")


def build_segment_stream(image: Path, audio: Path | None, duration_sec: float, output_path: Path) -> Any:
    """
    静止画1枚（+任意のナレーション音声）から1シーン分の MP4 を作る ffmpeg コマンドを組み立てる。

    - 画像は `-loop 1`（静止画を動画化）
    - 1280x720 にフィット（scale + pad、アスペクト維持、余白は黒）
    - 音声あり: `-t` と `-shortest` を併用し、長さは min(指定秒数, 音声長)
    - 音声なし: 映像のみ、長さは指定秒数ちょうど
    """
    video = (
        ffmpeg
        .input(str(image), loop=1, framerate=OUTPUT_FPS)
        .filter("scale", CANVAS_WIDTH, CANVAS_HEIGHT, force_original_aspect_ratio="decrease")
        .filter("pad", CANVAS_WIDTH, CANVAS_HEIGHT, "(ow-iw)/2", "(oh-ih)/2", color="black")
        .filter("setsar", "1")
    )

    out_kwargs: dict[str, object] = dict(
        t=f"{duration_sec:.3f}",
        r=OUTPUT_FPS,
        vcodec="libx264",
        pix_fmt="yuv420p",
        movflags="+faststart",
    )

    if audio is not None:
        out_kwargs.update(
            acodec="aac",
            audio_bitrate="192k",
            ar="48000",
            ac="2",
            shortest=None,  # -shortest（値なしフラグ）
        )
        a_in = ffmpeg.input(str(audio))
        stream = ffmpeg.output(video, a_in.audio, str(output_path), **out_kwargs)
    else:
        stream = ffmpeg.output(video, str(output_path), **out_kwargs)

    return stream.global_args(*_QUIET_ARGS).overwrite_output()


def encode_segment(
    image: Path,
    audio: Path | None,
    duration_sec: float,
    output_path: Path,
    scene_index: int = 0,
    settings: Settings | None = None,
) -> Segment:
    """
    1シーン分のセグメントを ffmpeg で1回だけエンコードする。

    Raises:
        EncodeError: ffmpeg が非ゼロ終了、または起動できなかった場合
        RenderTimeoutError: 制限時間を超えた場合
    """
    s = settings or get_settings()
    stream = build_segment_stream(image, audio, duration_sec, output_path)
    code, err = _run(stream, s, stage=f"encode scene {scene_index}")
    if code != 0:
        log_error(f"[encode_segment] scene={scene_index} exit={code} stderr=\n{err}")
        raise EncodeError(scene_index, code, stderr_excerpt(err))

    expected = float(duration_sec)
    if audio is not None:
        audio_dur = _probe_audio_duration_sec(str(audio), s, stage=f"probe audio scene {scene_index}")
        if audio_dur is not None and audio_dur > 0:
            expected = min(expected, audio_dur)

    log(f"[encode_segment] scene={scene_index} expected={expected:.3f}s audio={audio is not None}")
    return Segment(index=scene_index, path=output_path, expected_duration=expected, has_audio=audio is not None)


def _quote_concat_path(path: Path) -> str:
    # concat リストは '...' で囲む。内部の ' は '\'' にエスケープ
    return "'" + str(path).replace("'", "'\\''") + "'"


def write_concat_list(paths: Sequence[Path], list_file: Path) -> Path:
    lines = ["ffconcat version 1.0"] + [f"file {_quote_concat_path(Path(p).resolve())}" for p in paths]
    list_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_file


def build_concat_stream(list_file: Path, output_path: Path) -> Any:
    return (
        ffmpeg
        .input(str(list_file), f="concat", safe=0)
        .output(str(output_path), c="copy", movflags="+faststart")
        .global_args(*_QUIET_ARGS)
        .overwrite_output()
    )


def concatenate(
    segment_paths: Sequence[Path],
    output_path: Path,
    settings: Settings | None = None,
) -> Path:
    """
    複数のセグメント（同一コーデック/パラメータ前提）を1本に連結する。

    - concat demuxer を使用（再エンコードなし、リスト順に連結）
    - リストファイルは出力と同じディレクトリに concat.txt として書き出す
    Raises:
        ConcatError: 入力が空/欠損、または ffmpeg が非ゼロ終了した場合
    """
    s = settings or get_settings()
    files = [Path(p) for p in segment_paths]
    if not files:
        raise ConcatError(None, reason="no segments to join")

    bad = [p for p in files if not p.is_file() or p.stat().st_size == 0]
    if bad:
        log_error("[concatenate] missing or empty segments:", ", ".join(str(p) for p in bad))
        raise ConcatError(None, reason=f"{len(bad)} segment(s) missing or empty")

    list_file = write_concat_list(files, output_path.parent / "concat.txt")
    code, err = _run(build_concat_stream(list_file, output_path), s, stage="concat")
    if code != 0:
        log_error(f"[concatenate] exit={code} stderr=\n{err}")
        raise ConcatError(code, stderr_excerpt(err))

    log("[concatenate] video_path=", str(output_path), "segments=", len(files))
    return output_path
