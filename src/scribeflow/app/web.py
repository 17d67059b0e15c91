"""
JSON HTTP API and WebSocket progress channel.

Endpoints:
    GET    /api/models                  list whisper models
    POST   /api/check-dependencies      run the doctor checks
    POST   /api/transcribe              transcribe one server-local file
    POST   /api/batch                   transcribe a server-local directory
    POST   /api/download-model/{model}  fetch a model into the whisper cache
    GET    /api/transcripts             list transcript artifacts
    POST   /api/merge                   write merged_transcript.txt
    WS     /ws                          progress events for a session

HTTP calls carrying an `X-Session-Id` header relay their progress events to
the WebSocket registered under that id.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from scribeflow.core.batch import (
    STAGE_COMPLETE,
    STAGE_ERROR,
    STAGE_METADATA,
    STAGE_PROBING,
    STAGE_TRANSCRIBING,
    BatchAbortedError,
    ProgressCallback,
    ProgressEvent,
    notify,
    probe_metadata,
    run_batch,
)
from scribeflow.core.discovery import DiscoveryError, discover_jobs
from scribeflow.core.report import MERGED_FILENAME, list_transcripts, merge_transcripts, report_to_dict
from scribeflow.core.transcriber import (
    AVAILABLE_MODELS,
    TranscribeOptions,
    Transcriber,
    TranscriptionError,
    WhisperCliTranscriber,
    download_model,
    options_from_config,
)
from scribeflow.infra.config import (
    AppConfig,
    build_batch_config,
    normalize_model,
    normalize_output_format,
    normalize_task,
)
from scribeflow.infra.doctor import collect_doctor_report
from scribeflow.infra.ffmpeg import AudioProber, FfprobeAudioProber
from scribeflow.infra.language import normalize_language
from scribeflow.infra.storage import ensure_directory
from scribeflow.schemas.job import Job

logger = logging.getLogger(__name__)

SESSION_HEADER = "x-session-id"

router = APIRouter(prefix="/api", tags=["transcription"])


# ── Request bodies ───────────────────────────────────────────────────────


class TranscribeBody(BaseModel):
    path: str
    model: str = "base"
    language: str = "auto"
    task: str = "transcribe"
    format: str = "json"
    timestamps: bool = True
    word_timestamps: bool = Field(default=False, alias="wordTimestamps")

    model_config = {"populate_by_name": True, "protected_namespaces": ()}


class BatchBody(BaseModel):
    directory: str
    model: str = "base"
    language: str = "auto"
    concurrency: int = Field(default=1, ge=1)
    continue_on_error: bool = Field(default=True, alias="continueOnError")
    timeout: float | None = Field(default=None, gt=0)

    model_config = {"populate_by_name": True, "protected_namespaces": ()}


class MergeBody(BaseModel):
    output_name: str = Field(default=MERGED_FILENAME, alias="outputName")

    model_config = {"populate_by_name": True}


# ── Progress relay ───────────────────────────────────────────────────────


class SessionRegistry:
    """WebSocket connections keyed by session id."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}

    def register(self, session_id: str, websocket: WebSocket) -> None:
        self._sockets[session_id] = websocket

    def unregister(self, session_id: str) -> None:
        self._sockets.pop(session_id, None)

    def get(self, session_id: str | None) -> WebSocket | None:
        if not session_id:
            return None
        return self._sockets.get(session_id)


def event_to_message(event: ProgressEvent) -> dict[str, Any]:
    if event.stage == STAGE_METADATA:
        return {"type": "audioInfo", "file": event.job.name, "data": event.data}
    if event.stage == STAGE_COMPLETE:
        return {"type": "complete", "file": event.job.name, "message": event.message}
    if event.stage == STAGE_ERROR:
        return {"type": "error", "file": event.job.name, "message": event.message}
    return {"type": "status", "file": event.job.name, "message": event.message}


class ProgressRelay:
    """Forwards progress events from worker threads to one WebSocket, in order."""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop) -> None:
        self._websocket = websocket
        self._loop = loop
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def __call__(self, event: ProgressEvent) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event_to_message(event))

    async def pump(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            try:
                await self._websocket.send_json(message)
            except Exception:
                logger.debug("Dropping progress message for closed socket", exc_info=True)

    def close(self) -> None:
        self._queue.put_nowait(None)


class _RelayScope:
    def __init__(self, relay: ProgressRelay | None) -> None:
        self.relay = relay
        self._task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> ProgressCallback | None:
        if self.relay is not None:
            self._task = asyncio.create_task(self.relay.pump())
        return self.relay

    async def __aexit__(self, *_: object) -> None:
        if self.relay is not None and self._task is not None:
            self.relay.close()
            await self._task


def _relay_scope(request: Request) -> _RelayScope:
    websocket = request.app.state.sessions.get(request.headers.get(SESSION_HEADER))
    if websocket is None:
        return _RelayScope(None)
    return _RelayScope(ProgressRelay(websocket, asyncio.get_running_loop()))


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def _transcribe_single(
    transcriber: Transcriber,
    prober: AudioProber,
    input_path: Path,
    options: TranscribeOptions,
    on_progress: ProgressCallback | None,
) -> dict[str, Any]:
    job = Job(path=input_path)

    def emit(stage: str, message: str, data: dict[str, Any] | None = None) -> None:
        notify(on_progress, ProgressEvent(job=job, stage=stage, message=message, data=data))

    emit(STAGE_PROBING, "Checking audio file...")
    metadata = probe_metadata(prober, input_path)
    if metadata is not None:
        emit(STAGE_METADATA, f"Duration: {metadata.duration}", metadata.to_dict())
    emit(STAGE_TRANSCRIBING, f"Starting transcription with {options.model} model...")
    try:
        ensure_directory(options.output_dir)
        result = transcriber.transcribe(input_path, options)
    except (TranscriptionError, OSError) as exc:
        emit(STAGE_ERROR, str(exc))
        raise
    emit(STAGE_COMPLETE, "Transcription completed successfully")
    return {
        "success": True,
        "transcript": result.text,
        "language": result.language,
        "segments": [
            {"start": seg.start, "end": seg.end, "text": seg.text} for seg in result.segments
        ],
        "outputFile": str(result.output_path),
        "duration": metadata.duration if metadata else None,
        "audioInfo": metadata.to_dict() if metadata else None,
    }


# ── Routes ───────────────────────────────────────────────────────────────


@router.get("/models")
def models_endpoint() -> dict[str, Any]:
    return {
        "success": True,
        "models": [
            {"name": m.name, "size": m.size, "speed": m.speed, "accuracy": m.accuracy}
            for m in AVAILABLE_MODELS
        ],
    }


@router.post("/check-dependencies", response_model=None)
def check_dependencies_endpoint(request: Request) -> dict[str, Any] | JSONResponse:
    report = collect_doctor_report(request.app.state.config)
    if not report.ok:
        message = "; ".join(f"{c.name}: {c.detail}" for c in report.failures)
        return _error(500, message)
    return {"success": True, "message": "All dependencies are installed"}


@router.post("/transcribe", response_model=None)
async def transcribe_endpoint(body: TranscribeBody, request: Request) -> dict[str, Any] | JSONResponse:
    """Transcribe one file that already exists on the server."""
    state = request.app.state
    input_path = Path(body.path)
    if not input_path.is_file():
        return _error(400, f"Audio file not found: {body.path}")
    try:
        options = options_from_config(
            state.config,
            model=normalize_model(body.model),
            language=normalize_language(body.language),
            task=normalize_task(body.task),
            output_format=normalize_output_format(body.format),
            timestamps=body.timestamps,
            word_timestamps=body.word_timestamps,
        )
    except ValueError as exc:
        return _error(400, str(exc))

    logger.info("Transcription requested for %s", input_path.name)
    async with _relay_scope(request) as relay:
        try:
            return await asyncio.to_thread(
                _transcribe_single, state.transcriber, state.prober, input_path, options, relay
            )
        except (TranscriptionError, OSError) as exc:
            logger.error("Transcription error: %s", exc)
            return _error(500, str(exc))


@router.post("/batch", response_model=None)
async def batch_endpoint(body: BatchBody, request: Request) -> dict[str, Any] | JSONResponse:
    """Transcribe every audio file under a server-local directory."""
    state = request.app.state
    config: AppConfig = state.config
    try:
        jobs = discover_jobs(Path(body.directory))
        batch_config = build_batch_config(
            output_dir=config.output_dir,
            concurrency=body.concurrency,
            continue_on_error=body.continue_on_error,
            job_timeout=body.timeout,
        )
        options = options_from_config(
            config,
            model=normalize_model(body.model),
            language=normalize_language(body.language),
        )
    except (DiscoveryError, ValueError) as exc:
        return _error(400, str(exc))

    async with _relay_scope(request) as relay:
        try:
            report = await asyncio.to_thread(
                run_batch,
                jobs,
                transcriber=state.transcriber,
                prober=state.prober,
                config=batch_config,
                options=options,
                on_progress=relay,
            )
        except BatchAbortedError as exc:
            return _error(
                500,
                str(exc),
                successful=len(exc.results),
                failed=len(exc.errors),
            )
        except OSError as exc:
            logger.error("Batch output error: %s", exc)
            return _error(500, str(exc))
    return {"success": True, "report": report_to_dict(report)}


@router.post("/download-model/{model}", response_model=None)
async def download_model_endpoint(model: str, request: Request) -> dict[str, Any] | JSONResponse:
    try:
        name = normalize_model(model)
        await asyncio.to_thread(download_model, name, python_bin=request.app.state.config.python_bin)
    except ValueError as exc:
        return _error(400, str(exc))
    except (OSError, RuntimeError) as exc:
        return _error(500, str(exc))
    return {"success": True, "message": f"Model {name} downloaded successfully"}


@router.get("/transcripts")
def transcripts_endpoint(request: Request) -> dict[str, Any]:
    return {"success": True, "transcripts": list_transcripts(request.app.state.config.output_dir)}


@router.post("/merge", response_model=None)
def merge_endpoint(request: Request, body: MergeBody | None = None) -> dict[str, Any] | JSONResponse:
    output_name = body.output_name if body is not None else MERGED_FILENAME
    if Path(output_name).name != output_name:
        return _error(400, f"Invalid output name: {output_name}")
    try:
        merged = merge_transcripts(request.app.state.config.output_dir, output_name)
    except FileNotFoundError as exc:
        return _error(404, str(exc))
    return {"success": True, "path": str(merged)}


async def progress_socket(websocket: WebSocket) -> None:
    sessions: SessionRegistry = websocket.app.state.sessions
    await websocket.accept()
    session_id = secrets.token_hex(16)
    sessions.register(session_id, websocket)
    await websocket.send_json({"type": "connected", "sessionId": session_id})
    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "register" and data.get("sessionId"):
                sessions.unregister(session_id)
                session_id = str(data["sessionId"])
                sessions.register(session_id, websocket)
                await websocket.send_json({"type": "registered", "sessionId": session_id})
    except WebSocketDisconnect:
        logger.debug("WebSocket session %s closed", session_id)
    except ValueError:
        logger.warning("WebSocket session %s sent malformed JSON", session_id)
    finally:
        sessions.unregister(session_id)


def create_app(
    config: AppConfig,
    *,
    transcriber: Transcriber | None = None,
    prober: AudioProber | None = None,
) -> FastAPI:
    app = FastAPI(title="scribeflow")
    app.state.config = config
    app.state.transcriber = transcriber or WhisperCliTranscriber(config.whisper_bin)
    app.state.prober = prober or FfprobeAudioProber(config.ffprobe_bin)
    app.state.sessions = SessionRegistry()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Session-Id"],
    )
    app.include_router(router)
    app.add_api_websocket_route("/ws", progress_socket)
    return app
