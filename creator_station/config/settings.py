import os
from dataclasses import dataclass, field

from creator_station.utils.env import env_float, env_int, env_truthy


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


@dataclass(frozen=True)
class Settings:
    # OpenAI（台本解析 / TTS）
    openai_api_key: str = field(
        default_factory=lambda: os.getenv("AAP_OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY", "")
    )
    openai_base_url: str = field(default_factory=lambda: _env("OPENAI_BASE_URL", "https://api.openai.com/v1"))

    # Model defaults
    model_llm: str = field(default_factory=lambda: _env("MODEL_LLM", "gpt-4o-mini"))
    # 画像生成は OpenRouter 経由で Gemini を利用
    model_image: str = field(default_factory=lambda: _env("MODEL_IMAGE", "google/gemini-2.5-flash-image-preview"))
    model_tts: str = field(default_factory=lambda: _env("MODEL_TTS", "gpt-4o-mini-tts"))
    tts_voice: str = field(default_factory=lambda: _env("TTS_VOICE", "alloy"))

    # OpenRouter（画像生成用）
    # AAP系と通常の環境変数の両方に対応
    app_openrouter_api_key: str = field(
        default_factory=lambda: os.getenv("AAP_OPENROUTER_API_KEY") or os.getenv("OPENROUTER_API_KEY", "")
    )
    app_openrouter_base_url: str = field(
        default_factory=lambda: os.getenv("AAP_OPENROUTER_BASE_URL")
        or os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    )

    # GCP
    # Base64-encoded service account JSON for explicit credentials
    # If set, code will decode and use it instead of ADC.
    gcp_sa_key_b64: str | None = field(default_factory=lambda: os.getenv("GCP_SA_KEY_B64"))
    gcp_project: str | None = field(default_factory=lambda: os.getenv("GCP_PROJECT"))
    # 完成動画のアーカイブ先（未設定ならアップロードしない）
    archive_bucket: str | None = field(default_factory=lambda: os.getenv("RENDER_ARCHIVE_BUCKET") or None)
    signed_url_expire_seconds: int = field(default_factory=lambda: env_int("SIGNED_URL_EXPIRE_SECONDS", 86400))

    # Render
    ffmpeg_binary: str = field(default_factory=lambda: _env("FFMPEG_BINARY", "ffmpeg"))
    ffprobe_binary: str = field(default_factory=lambda: _env("FFPROBE_BINARY", "ffprobe"))
    ffmpeg_timeout_seconds: float = field(default_factory=lambda: env_float("FFMPEG_TIMEOUT_SECONDS", 300.0))
    render_max_workers: int = field(default_factory=lambda: max(1, env_int("RENDER_MAX_WORKERS", 1)))
    render_tmp_dir: str | None = field(default_factory=lambda: os.getenv("RENDER_TMP_DIR") or None)
    strict_scene_order: bool = field(default_factory=lambda: env_truthy("STRICT_SCENE_ORDER", "1"))

    # Feature toggles
    disable_tts: bool = field(default_factory=lambda: env_truthy("DISABLE_TTS", "0"))
    analyze_dry_run: bool = field(default_factory=lambda: env_truthy("ANALYZE_DRY_RUN", "0"))

    # HTTP
    allowed_origin: str = field(default_factory=lambda: _env("ALLOWED_ORIGIN", "*"))
    max_upload_files: int = field(default_factory=lambda: env_int("MAX_UPLOAD_FILES", 200))


def get_settings() -> Settings:
    return Settings()
