from __future__ import annotations

import base64
from typing import Any, List, Optional

from fastapi import APIRouter, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from creator_station.config.settings import Settings, get_settings
from creator_station.pipelines.errors import RenderError, RenderTimeoutError, ValidationError
from creator_station.pipelines.render import OUTPUT_FILENAME, render_in_workspace
from creator_station.pipelines.workspace import UploadedFile, Workspace
from creator_station.services.errors import ServiceError
from creator_station.services.image_service import generate_image
from creator_station.services.llm_service import analyze_script
from creator_station.services.schemas import AnalyzeRequest, ImageRequest, SpeechRequest
from creator_station.services.tts_service import AUDIO_MIME, SpeechDisabledError, generate_tts
from creator_station.utils.log import log


router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _format_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p != "body"]
    field = ".".join(loc) or "body"
    return f"{field}: {first.get('msg', 'is invalid')}"


@router.get("/healthz", response_class=PlainTextResponse)
def healthz() -> str:
    return "ok"


@router.post("/api/analyze-script")
def analyze_script_route(body: AnalyzeRequest, request: Request) -> Any:
    s = _settings(request)
    if s.analyze_dry_run:
        # ボディのパース確認用（モデルは呼ばない）
        return {
            "ok": True,
            "dryRun": True,
            "receivedChars": len(body.script),
            "message": "Body parsing works. Turn off ANALYZE_DRY_RUN to call the model.",
        }
    try:
        plan = analyze_script(body, settings=s)
    except ServiceError as e:
        return _error(502, str(e))
    return {"ok": True, "data": plan}


@router.post("/api/generate-image")
def generate_image_route(body: ImageRequest, request: Request) -> Any:
    try:
        png = generate_image(body, settings=_settings(request))
    except ServiceError as e:
        return _error(502, str(e))
    return {"ok": True, "imageBase64": base64.b64encode(png).decode("ascii")}


@router.post("/api/generate-speech")
def generate_speech_route(body: SpeechRequest, request: Request) -> Any:
    try:
        audio = generate_tts(body, settings=_settings(request))
    except SpeechDisabledError as e:
        return _error(503, str(e))
    except ServiceError as e:
        return _error(502, str(e))
    return {"ok": True, "audioBase64": base64.b64encode(audio).decode("ascii"), "mime": AUDIO_MIME}


@router.post("/api/render-video")
def render_video_route(
    request: Request,
    manifest: str = Form(...),
    images: Optional[List[UploadFile]] = File(None),
    audios: Optional[List[UploadFile]] = File(None),
) -> Response:
    """
    multipart（images[] / audios[] / manifest）から MP4 を生成して添付ファイルとして返す。

    アップロードは直接ワークスペースへ書き込み、成功/失敗に関わらずまとめて削除する。
    """
    s = _settings(request)
    images = images or []
    audios = audios or []
    if len(images) > s.max_upload_files or len(audios) > s.max_upload_files:
        return _error(400, f"at most {s.max_upload_files} images and {s.max_upload_files} audios are accepted")

    try:
        with Workspace(s) as ws:
            image_files: list[UploadedFile] = [
                ws.receive(f.filename or f"image_{i:04d}", f.file) for i, f in enumerate(images)
            ]
            audio_files: list[UploadedFile] = [
                ws.receive(f.filename or f"audio_{i:04d}", f.file) for i, f in enumerate(audios)
            ]
            result = render_in_workspace(ws, image_files, audio_files, manifest, settings=s)
    except ValidationError as e:
        return _error(400, str(e))
    except RenderTimeoutError as e:
        return _error(504, str(e))
    except RenderError as e:
        return _error(500, str(e))

    log(f"[render-video] scenes={result.scene_count} expected={result.expected_duration}s bytes={len(result.data)}")
    headers = {"Content-Disposition": f'attachment; filename="{OUTPUT_FILENAME}"'}
    if result.archive_url:
        headers["X-Archive-Url"] = result.archive_url
    return Response(content=result.data, media_type="video/mp4", headers=headers)


def create_app(settings: Settings | None = None) -> FastAPI:
    s = settings or get_settings()
    app = FastAPI(title="Creator Station", version="0.1.0")
    app.state.settings = s

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in s.allowed_origin.split(",") if o.strip()] or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        if request.url.path.startswith("/api"):
            log(f"[API] {request.method} {request.url.path} content-type={request.headers.get('content-type', '')}")
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, _format_validation_error(exc))

    app.include_router(router)
    return app


app = create_app()
