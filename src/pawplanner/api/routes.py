"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Request, Response, UploadFile, status

from pawplanner.api.middleware import verify_api_key
from pawplanner.api.schemas import (
    CycleResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
)
from pawplanner.detection.cycle import CycleController
from pawplanner.errors import SelectionCancelled
from pawplanner.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from pawplanner.config import Settings
    from pawplanner.detection.sessions import SessionRegistry
    from pawplanner.ml.inference import InferencePool
    from pawplanner.ml.model_manager import ModelManager
    from pawplanner.ml.object_detector import OnnxObjectDetector

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

SessionId = Annotated[str, Path(pattern=r"^[A-Za-z0-9_-]{1,64}$")]

_BUSY_DETAIL = "All inference slots are busy, retry later"


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_detector(request: Request) -> OnnxObjectDetector:
    detector: OnnxObjectDetector = request.app.state.detector
    return detector


def _get_sessions(request: Request) -> SessionRegistry:
    sessions: SessionRegistry = request.app.state.sessions
    return sessions


async def _read_upload(file: UploadFile, max_file_size: int) -> bytes:
    data = await file.read(max_file_size + 1)
    if len(data) > max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"File exceeds {max_file_size} bytes",
        )
    return data


@router.post(
    "/detect-objects",
    response_model=CycleResponse,
    responses={
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Detect objects in a photo",
)
async def detect_objects(request: Request, file: UploadFile) -> CycleResponse:
    """Run a single detection cycle and return the deduplicated, sorted labels."""
    settings = _get_settings(request)
    image = await _read_upload(file, settings.max_file_size)

    controller: CycleController[bytes] = CycleController(
        _get_detector(request),
        runner=_get_inference_pool(request).run,
    )
    try:
        await controller.select(image)
    except TimeoutError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_BUSY_DETAIL) from None
    return CycleResponse.from_outcome(controller.current)


@router.post(
    "/sessions/{session_id}/photo",
    response_model=CycleResponse,
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Select a photo for a session",
)
async def select_photo(request: Request, session_id: SessionId, file: UploadFile | None = None) -> CycleResponse:
    """Replace the session's displayed results with those of a new photo.

    Sending no file (or an empty one) cancels the selection and leaves the
    current results untouched. If another photo is selected for the same
    session before this one finishes, this request gets 409. If the session
    is closed meanwhile, it gets 404.
    """
    settings = _get_settings(request)
    controller = _get_sessions(request).get_or_create(session_id)
    selected = False

    async def source() -> bytes | None:
        nonlocal selected
        if file is None:
            return None
        image = await _read_upload(file, settings.max_file_size)
        if not image:
            raise SelectionCancelled
        selected = True
        return image

    try:
        outcome = await controller.select_from(source)
    except TimeoutError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_BUSY_DETAIL) from None
    except RuntimeError:
        if not controller.closed:
            raise
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session was closed") from None

    if selected and outcome is None:
        if controller.closed:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session was closed")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Superseded by a newer photo selection")
    return CycleResponse.from_outcome(controller.current)


@router.get(
    "/sessions/{session_id}",
    response_model=CycleResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Current results of a session",
)
async def get_session(request: Request, session_id: SessionId) -> CycleResponse:
    controller = _get_sessions(request).get(session_id)
    if controller is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session")
    return CycleResponse.from_outcome(controller.current)


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Close a session",
)
async def close_session(request: Request, session_id: SessionId) -> Response:
    if not _get_sessions(request).close(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    model_manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        rejected_detections=pool.rejected_count,
        active_sessions=len(_get_sessions(request)),
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status based on current configuration."""
    settings = _get_settings(request)

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        if spec.name == settings.detection_model:
            model_status = "active"
        elif spec.agpl and not settings.accept_agpl_license:
            model_status = "requires_license"
        else:
            model_status = "available"

        models.append(
            ModelInfo(
                name=spec.name,
                task=str(spec.task),
                status=model_status,
                license=spec.license,
            )
        )

    return ModelsResponse(models=models)
