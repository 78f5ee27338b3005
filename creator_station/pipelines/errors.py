from __future__ import annotations

"""
レンダリング処理の例外定義。

API 層はこの分類をもとにステータスコードを決める:
    ValidationError -> 400, RenderTimeoutError -> 504, それ以外の RenderError -> 500
"""

# stderr の抜粋は末尾から最大この行数/文字数
STDERR_EXCERPT_LINES = 50
STDERR_EXCERPT_CHARS = 4000


def stderr_excerpt(stderr: str | bytes | None) -> str:
    """ffmpeg の stderr から末尾の抜粋を作る。"""
    if stderr is None:
        return ""
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    tail = "\n".join(stderr.strip().splitlines()[-STDERR_EXCERPT_LINES:])
    return tail[-STDERR_EXCERPT_CHARS:]


class RenderError(Exception):
    """Base class for every failure of a render request."""


class ValidationError(RenderError):
    """Caller input does not satisfy the manifest/upload contract."""

    def __init__(self, field: str, constraint: str) -> None:
        self.field = field
        self.constraint = constraint
        super().__init__(f"{field}: {constraint}")


class ResourceError(RenderError):
    """Temporary storage could not be allocated."""


class EncodeError(RenderError):
    def __init__(self, scene_index: int, exit_code: int | None, stderr_excerpt: str = "") -> None:
        self.scene_index = scene_index
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt
        if exit_code is None:
            msg = f"scene {scene_index} failed to encode (encoder could not be started)"
        else:
            msg = f"scene {scene_index} failed to encode (exit code {exit_code})"
        super().__init__(msg)


class ConcatError(RenderError):
    def __init__(self, exit_code: int | None, stderr_excerpt: str = "", reason: str | None = None) -> None:
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt
        if reason:
            msg = f"failed to concatenate segments ({reason})"
        elif exit_code is None:
            msg = "failed to concatenate segments (encoder could not be started)"
        else:
            msg = f"failed to concatenate segments (exit code {exit_code})"
        super().__init__(msg)


class RenderTimeoutError(RenderError, TimeoutError):
    """An encoder invocation exceeded FFMPEG_TIMEOUT_SECONDS and was killed."""

    def __init__(self, stage: str, timeout: float) -> None:
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"{stage} timed out after {timeout:g}s")
