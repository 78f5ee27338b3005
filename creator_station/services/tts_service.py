from __future__ import annotations

from openai import OpenAI, OpenAIError

from creator_station.config.settings import Settings, get_settings
from creator_station.services.errors import ServiceError
from creator_station.services.schemas import SpeechRequest, VoiceLiteral
from creator_station.utils.log import log, log_error


# UI 上のボイス名 -> OpenAI TTS のボイス。Default は設定値（TTS_VOICE）を使う
VOICE_MAP: dict[str, str] = {
    "Fenrir": "onyx",  # 低めの男性寄り
    "Puck": "echo",  # 明瞭な男性寄り
    "Zephyr": "shimmer",  # 女性寄り
    "Nova": "nova",
}

AUDIO_MIME = "audio/mpeg"


class SpeechDisabledError(ServiceError):
    """Raised when speech synthesis is turned off by DISABLE_TTS."""


def resolve_voice(voice: VoiceLiteral, settings: Settings) -> str:
    return VOICE_MAP.get(voice, settings.tts_voice)


def generate_tts(req: SpeechRequest, settings: Settings | None = None) -> bytes:
    """
    音声を生成し、MP3 のバイト列を返します（OpenAI の TTS を使用）。

    Params:
        req: 読み上げるテキスト、ボイス名、話速（0.7〜1.3）
    Returns:
        音声バイト列
    Raises:
        SpeechDisabledError: DISABLE_TTS が有効な場合
        ServiceError: API 呼び出しに失敗した場合、または音声が空の場合
    """
    s = settings or get_settings()
    if s.disable_tts:
        raise SpeechDisabledError("TTS disabled by server env var DISABLE_TTS=1")

    client = OpenAI(
        api_key=s.openai_api_key,
        base_url=s.openai_base_url,
    )
    v = resolve_voice(req.voice, s)

    try:
        with client.audio.speech.with_streaming_response.create(
            model=s.model_tts,
            voice=v,
            input=req.text,
            response_format="mp3",
            speed=req.speaking_rate,
        ) as response:
            data = response.read()
    except OpenAIError as e:
        log_error("[generate_tts] openai error:", repr(e))
        raise ServiceError("Speech synthesis failed. Check server logs for details.") from e

    if not data:
        raise ServiceError("No audio generated.")

    log("[generate_tts] voice=", v, ", speed=", req.speaking_rate, ", bytes=", len(data))
    return data
