from contextlib import asynccontextmanager
import logging
import os
import sys
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from dotenv import load_dotenv

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

load_dotenv(Path(ROOT_DIR) / ".env")

from backend import config
from backend.schemas import ErrorResponse, ExportRequest, ExportResponse, SegmentItem
from backend.services.clip_manager import ClipManager
from pipeline.assembler import ClipAssembler
from pipeline.errors import (
    AssemblyCancelledError,
    AssemblyError,
    AssemblyTimeoutError,
    NoAudioDataError,
)
from pipeline.formats import MEDIA_TYPES
from pipeline.models import RequestVars, Timeouts
from pipeline.tools import discover_tools
from sources.segment_fetcher import SegmentFetcher
from sources.slice_builder import SliceBuilder
from storage.segment_index import SegmentIndex


logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    os.makedirs(config.DATA_DIR, exist_ok=True)
    os.makedirs(config.CLIP_DIR, exist_ok=True)
    os.makedirs(config.EXPORT_DIR, exist_ok=True)

    tools = discover_tools(sox_bin=config.SOX_BIN, ffmpeg_bin=config.FFMPEG_BIN)

    index = SegmentIndex(db_path=config.DB_PATH)
    index.init_db()

    assembler = ClipAssembler(
        slice_builder=SliceBuilder(index=index, clip_dir=config.CLIP_DIR),
        fetcher=SegmentFetcher(clip_dir=config.CLIP_DIR, request_timeout=config.FETCH_TIMEOUT_SECONDS),
        tools=tools,
        export_dir=config.EXPORT_DIR,
        sample_rate=config.PCM_SAMPLE_RATE,
        channels=config.PCM_CHANNELS,
        aac_encoder=config.AAC_ENCODER,
        fetch_workers=config.FETCH_WORKERS,
        timeouts=Timeouts(
            fetch_seconds=config.FETCH_TIMEOUT_SECONDS,
            process_seconds=config.PROCESS_TIMEOUT_SECONDS,
        ),
    )

    app.state.index = index
    app.state.clip_manager = ClipManager(
        assembler=assembler,
        index=index,
        queue_chunks=config.STREAM_QUEUE_CHUNKS,
    )

    yield


app = FastAPI(title="Mission Audio API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1|[0-9]{1,3}(?:\.[0-9]{1,3}){3})(:[0-9]+)?$",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Clip-Warning"],
)


def _request_vars(mission: int, channels: list[str], start: int, duration: int, fmt: str) -> RequestVars:
    try:
        return RequestVars(
            mission=mission,
            channels=tuple(channels),
            format=fmt,
            start=start,
            duration=duration,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_REQUEST", "message": str(exc)},
        ) from exc


def _no_data(exc: NoAudioDataError) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "NO_DATA", "message": str(exc)},
    )


@app.get("/api/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@app.get(
    "/api/missions/{mission}/audio",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def stream_audio(
    mission: int,
    channels: str = Query(min_length=1, description="Comma separated channel ids"),
    start: int = Query(ge=0),
    duration: int = Query(gt=0),
    format: str = Query(default="m4a"),
) -> StreamingResponse:
    rv = _request_vars(mission, channels.split(","), start, duration, format)

    try:
        plan, chunks = app.state.clip_manager.open_stream(rv)
    except NoAudioDataError as exc:
        raise _no_data(exc) from exc
    except AssemblyError as exc:
        raise HTTPException(
            status_code=502,
            detail={"code": "PROCESSING_ERROR", "message": str(exc)},
        ) from exc

    headers = {}
    if plan.warnings:
        headers["X-Clip-Warning"] = "; ".join(plan.warnings)

    return StreamingResponse(
        chunks,
        media_type=MEDIA_TYPES[plan.output_format],
        headers=headers,
    )


@app.post(
    "/api/missions/{mission}/exports",
    response_model=ExportResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
def export_audio(mission: int, payload: ExportRequest) -> ExportResponse:
    rv = _request_vars(mission, payload.channels, payload.start, payload.duration, payload.format)

    try:
        result = app.state.clip_manager.export(rv)
    except NoAudioDataError as exc:
        raise _no_data(exc) from exc
    except (AssemblyTimeoutError, AssemblyCancelledError) as exc:
        raise HTTPException(
            status_code=504,
            detail={"code": "TIMEOUT", "message": str(exc)},
        ) from exc
    except AssemblyError as exc:
        raise HTTPException(
            status_code=502,
            detail={"code": "PROCESSING_ERROR", "message": str(exc)},
        ) from exc

    return ExportResponse.from_result(result)


@app.get("/api/channels/{channel_id}/segments", response_model=list[SegmentItem])
def list_segments(
    channel_id: str,
    limit: int = Query(default=config.SEGMENTS_DEFAULT_LIMIT, ge=1, le=config.SEGMENTS_MAX_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> list[SegmentItem]:
    rows = app.state.clip_manager.list_segments(channel_id, limit=limit, offset=offset)
    return [SegmentItem(**row) for row in rows]
