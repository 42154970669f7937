"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from coincounter.api.middleware import verify_api_key
from coincounter.api.schemas import (
    ClassificationPayload,
    CoinCount,
    DecodeRequest,
    ErrorResponse,
    HealthResponse,
    LabelsResponse,
    PredictionResponse,
)
from coincounter.ml.decoder import ClassificationOutput, ModelOutput, output_from_tensor
from coincounter.ml.denominations import COIN_VALUES
from coincounter.ml.errors import ModelUnavailableError, PredictionError, PredictionUnavailableError

if TYPE_CHECKING:
    from coincounter.config import Settings
    from coincounter.ml.classifier import CoinClassifier
    from coincounter.ml.decoder import PredictionResult
    from coincounter.ml.inference import FrameThrottle, InferencePool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_PREDICT_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> CoinClassifier:
    classifier: CoinClassifier = request.app.state.classifier
    return classifier


def _get_frame_throttle(request: Request) -> FrameThrottle:
    throttle: FrameThrottle = request.app.state.frame_throttle
    return throttle


def _to_response(result: PredictionResult) -> PredictionResponse:
    return PredictionResponse(
        lines=list(result.lines),
        total=result.total,
        text=result.text,
        counts=[
            CoinCount(label=item.label, count=item.count, value=item.value, subtotal=item.subtotal)
            for item in result.counts
        ],
    )


async def _read_upload(request: Request, file: UploadFile) -> bytes:
    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    return data


def _require_ready(request: Request) -> CoinClassifier:
    classifier = _get_classifier(request)
    if not classifier.is_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=classifier.load_error or "Model unavailable",
        )
    return classifier


async def _predict(request: Request, data: bytes) -> PredictionResponse:
    classifier = _require_ready(request)
    pool = _get_inference_pool(request)
    try:
        result = await pool.run(classifier.predict_bytes, data)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry later",
        ) from None
    except PredictionError as exc:
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if isinstance(exc, ModelUnavailableError)
            else status.HTTP_422_UNPROCESSABLE_ENTITY
        )
        raise HTTPException(status_code=code, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Inference failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"推論エラー: {exc}",
        ) from exc

    return _to_response(result)


@router.post(
    "/predict",
    response_model=PredictionResponse,
    responses=_PREDICT_RESPONSES,
    summary="Count coins in an image",
)
async def predict(request: Request, file: UploadFile) -> PredictionResponse:
    """Count the coins in an uploaded photo and return the total value."""
    data = await _read_upload(request, file)
    return await _predict(request, data)


@router.post(
    "/streams/{stream_id}/frames",
    response_model=PredictionResponse,
    responses={**_PREDICT_RESPONSES, status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse}},
    summary="Count coins in one frame of a camera stream",
)
async def predict_frame(request: Request, stream_id: str, file: UploadFile) -> PredictionResponse:
    """Like /predict, but frames of one stream are rate limited.

    Frames rejected for other reasons (no model, oversized upload) do not use
    up the stream's slot.
    """
    _require_ready(request)
    data = await _read_upload(request, file)

    throttle = _get_frame_throttle(request)
    wait = throttle.try_acquire(stream_id)
    if wait > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Frame skipped, stream is throttled",
            headers={"Retry-After": str(max(1, round(wait)))},
        )
    return await _predict(request, data)


@router.delete(
    "/streams/{stream_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End a camera stream",
)
async def end_stream(request: Request, stream_id: str) -> None:
    """Forget the throttling state of a stream."""
    _get_frame_throttle(request).forget(stream_id)


@router.post(
    "/decode",
    response_model=PredictionResponse,
    responses={status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse}},
    summary="Decode a raw model output",
)
async def decode_output(request: Request, body: DecodeRequest) -> PredictionResponse:
    """Decode a classification or count tensor against the loaded label catalog."""
    classifier = _get_classifier(request)
    payload = body.output

    output: ModelOutput
    if isinstance(payload, ClassificationPayload):
        output = ClassificationOutput(identifier=payload.identifier, confidence=payload.confidence)
    else:
        tensor = np.asarray(payload.values, dtype=np.float64).reshape(payload.shape)
        try:
            output = output_from_tensor(tensor)
        except PredictionUnavailableError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    return _to_response(classifier.decode(output))


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="Label catalog and coin values",
)
async def labels(request: Request) -> LabelsResponse:
    """Return the loaded label catalog and the denomination value table."""
    settings = _get_settings(request)
    classifier = _get_classifier(request)
    return LabelsResponse(
        labels=list(classifier.labels),
        values=dict(COIN_VALUES),
        count_start_offset=settings.count_start_offset,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    classifier = _get_classifier(request)
    return HealthResponse(
        status="ok" if classifier.is_ready else "degraded",
        gpu=settings.device == "cuda",
        model_ready=classifier.is_ready,
        load_error=classifier.load_error,
        models_loaded=[classifier.model_name] if classifier.model_name else [],
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
