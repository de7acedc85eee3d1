"""API route definitions."""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from fruitlens.api.middleware import verify_api_key
from fruitlens.api.schemas import (
    CameraStatus,
    ClassifyResponse,
    DisplayResult,
    ErrorResponse,
    HealthResponse,
    LifecycleStatus,
    ModelInfo,
    ModelsResponse,
)
from fruitlens.errors import CaptureError, DecodeError
from fruitlens.ml.camera import open_camera
from fruitlens.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from fruitlens.config import Settings
    from fruitlens.ml.inference import InferencePool
    from fruitlens.ml.model_manager import OnnxModelManager
    from fruitlens.pipeline import FruitPipeline, PipelineOutcome

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pipeline(request: Request) -> FruitPipeline:
    pipeline: FruitPipeline = request.app.state.pipeline
    return pipeline


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> OnnxModelManager:
    manager: OnnxModelManager = request.app.state.model_manager
    return manager


def _error_status(outcome: PipelineOutcome) -> int:
    if isinstance(outcome.error, DecodeError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(outcome.error, CaptureError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_503_SERVICE_UNAVAILABLE


def _to_response(outcome: PipelineOutcome) -> ClassifyResponse:
    if outcome.error is not None or outcome.display is None or outcome.request_id is None:
        raise HTTPException(status_code=_error_status(outcome), detail=outcome.status_message)
    return ClassifyResponse(
        request_id=outcome.request_id,
        status_message=outcome.status_message,
        stale=outcome.stale,
        result=DisplayResult.model_validate(outcome.display),
    )


@router.post(
    "/classify",
    response_model=ClassifyResponse,
    responses={**_ERROR_RESPONSES, status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse}},
    summary="Identify the fruit in an uploaded image",
)
async def classify_upload(request: Request, file: UploadFile) -> ClassifyResponse:
    """Decode an uploaded image and return ranked fruit guesses."""
    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    outcome = await _get_pipeline(request).submit_upload(data)
    return _to_response(outcome)


@router.post(
    "/camera/start",
    response_model=CameraStatus,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Open the camera stream",
)
async def start_camera(request: Request) -> CameraStatus:
    """Open the configured camera so frames can be captured."""
    pipeline = _get_pipeline(request)
    try:
        await pipeline.start_camera(partial(open_camera, _get_settings(request)))
    except CaptureError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Could not access the camera. Check that it is connected and not in use.",
        ) from exc
    return CameraStatus(active=pipeline.camera_active)


@router.post(
    "/camera/capture",
    response_model=ClassifyResponse,
    responses=_ERROR_RESPONSES,
    summary="Capture a camera frame and identify the fruit in it",
)
async def capture_frame(request: Request) -> ClassifyResponse:
    """Grab the current camera frame and return ranked fruit guesses."""
    outcome = await _get_pipeline(request).submit_capture()
    return _to_response(outcome)


@router.post(
    "/camera/stop",
    response_model=CameraStatus,
    summary="Release the camera",
)
async def stop_camera(request: Request) -> CameraStatus:
    pipeline = _get_pipeline(request)
    pipeline.stop_camera()
    return CameraStatus(active=pipeline.camera_active)


@router.get(
    "/result",
    response_model=ClassifyResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}, **_ERROR_RESPONSES},
    summary="Latest classification result",
)
async def latest_result(request: Request) -> ClassifyResponse:
    """Return the result for the most recently submitted image."""
    outcome = _get_pipeline(request).latest
    if outcome is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No image has been classified yet")
    return _to_response(outcome)


@router.get(
    "/status",
    response_model=LifecycleStatus,
    summary="Classifier lifecycle status",
)
async def lifecycle_status(request: Request) -> LifecycleStatus:
    return LifecycleStatus.model_validate(_get_pipeline(request).lifecycle.snapshot())


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        classifier_state=_get_pipeline(request).lifecycle.state.value,
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered models, marking the one in use."""
    snapshot = _get_pipeline(request).lifecycle.snapshot()
    in_use_status = "fallback" if snapshot.fallback else "active"

    models = [
        ModelInfo(
            name=spec.name,
            version=spec.version,
            alpha=spec.alpha,
            status=in_use_status if spec.name == snapshot.model_name else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    if snapshot.model_name is not None and snapshot.model_name not in MODEL_REGISTRY:
        settings = _get_settings(request)
        models.insert(
            0,
            ModelInfo(
                name=snapshot.model_name,
                version=settings.model_version,
                alpha=settings.model_alpha,
                status=in_use_status,
                license="unknown",
            ),
        )
    return ModelsResponse(models=models)
