"""
FastAPI layer exposing the background remover.

Endpoints:
 - GET /health
 - POST /sessions
 - GET /sessions/{session_id}
 - POST /sessions/{session_id}/process
 - GET /sessions/{session_id}/images/{kind}
 - DELETE /sessions/{session_id}/results
 - DELETE /sessions/{session_id}
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, HttpUrl
import requests

from . import config
from .errors import DecodeFailure, DimensionMismatch, ModelLoadFailure, PipelineBusy, SegmentationFailure
from .pipeline import BackgroundRemover, MaskOptions, SharedModel
from .segmentation import Segmenter
from .segmenter import build_segmenter

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Selfie Background Remover", version="0.1.0")

IMAGE_KINDS = ("original", "processed", "mask")

_model: Optional[SharedModel] = None
_sessions: Dict[str, BackgroundRemover] = {}


class CreateSessionRequest(BaseModel):
    smoothEdges: Optional[bool] = None
    inverted: Optional[bool] = None
    smoothingStrategy: Optional[str] = None


class CreateSessionResponse(BaseModel):
    sessionId: str


class SessionStatus(BaseModel):
    sessionId: str
    busy: bool
    state: str
    hasOriginal: bool
    hasProcessed: bool
    hasMask: bool


class ProcessRequest(BaseModel):
    imageUrl: HttpUrl


class ProcessResponse(BaseModel):
    originalImage: str
    processedImage: str
    maskImage: str


def get_model() -> SharedModel:
    """One collaborator per process, loaded once and shared by every session."""
    global _model
    if _model is None:
        _model = SharedModel(build_segmenter(settings))
    return _model


def set_segmenter(segmenter: Optional[Segmenter]) -> None:
    """Swap the shared collaborator; existing sessions are dropped."""
    global _model
    _model = SharedModel(segmenter) if segmenter is not None else None
    _sessions.clear()


def _get_session(session_id: str) -> BackgroundRemover:
    remover = _sessions.get(session_id)
    if remover is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    return remover


def _download_image(url: str) -> bytes:
    resp = requests.get(url, timeout=(5, settings.request_timeout_seconds))
    resp.raise_for_status()
    return resp.content


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/sessions", response_model=CreateSessionResponse, status_code=201)
def create_session(body: Optional[CreateSessionRequest] = None):
    body = body or CreateSessionRequest()
    defaults = MaskOptions.from_settings(settings)
    strategy = body.smoothingStrategy or defaults.strategy
    if strategy and strategy.lower() not in config.SMOOTHING_STRATEGIES:
        raise HTTPException(status_code=422, detail="smoothingStrategy must be one of auto|confidence|box")
    options = MaskOptions(
        smooth_edges=defaults.smooth_edges if body.smoothEdges is None else body.smoothEdges,
        inverted=defaults.inverted if body.inverted is None else body.inverted,
        strategy=strategy,
    )
    session_id = str(uuid.uuid4())
    _sessions[session_id] = BackgroundRemover(get_model(), options=options, settings=settings)
    logger.info("Created session %s (smooth=%s inverted=%s)", session_id, options.smooth_edges, options.inverted)
    return CreateSessionResponse(sessionId=session_id)


@app.get("/sessions/{session_id}", response_model=SessionStatus)
def session_status(session_id: str):
    remover = _get_session(session_id)
    snapshot = remover.session
    return SessionStatus(
        sessionId=session_id,
        busy=snapshot.busy,
        state=remover.state.value,
        hasOriginal=snapshot.original is not None,
        hasProcessed=snapshot.processed is not None,
        hasMask=snapshot.mask is not None,
    )


@app.post("/sessions/{session_id}/process", response_model=ProcessResponse)
async def process_image(session_id: str, body: ProcessRequest):
    remover = _get_session(session_id)
    if remover.busy:
        raise HTTPException(status_code=409, detail="Session is busy")

    try:
        image_bytes = await asyncio.to_thread(_download_image, str(body.imageUrl))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to download image: %s", exc)
        raise HTTPException(status_code=400, detail="Could not download image") from exc

    try:
        result = await remover.process(image_bytes)
    except PipelineBusy as exc:
        raise HTTPException(status_code=409, detail="Session is busy") from exc
    except DecodeFailure as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except DimensionMismatch as exc:
        logger.error("Segmenter broke the size contract: %s", exc)
        raise HTTPException(status_code=502, detail="Segmentation output did not match the image") from exc
    except ModelLoadFailure as exc:
        raise HTTPException(status_code=503, detail="Segmentation model unavailable") from exc
    except SegmentationFailure as exc:
        raise HTTPException(status_code=500, detail="Segmentation failed") from exc
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail="Background removal failed") from exc

    return ProcessResponse(**result.as_data_urls())


@app.get("/sessions/{session_id}/images/{kind}")
def session_image(session_id: str, kind: str):
    if kind not in IMAGE_KINDS:
        raise HTTPException(status_code=404, detail="Unknown image kind")
    image = getattr(_get_session(session_id).session, kind)
    if image is None:
        raise HTTPException(status_code=404, detail=f"No {kind} image in session")
    return Response(content=image.encoded, media_type="image/png")


@app.delete("/sessions/{session_id}/results", status_code=204)
def clear_results(session_id: str):
    _get_session(session_id).clear()
    return Response(status_code=204)


@app.delete("/sessions/{session_id}", status_code=204)
def delete_session(session_id: str):
    if _sessions.pop(session_id, None) is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    return Response(status_code=204)
