"""Pydantic request/response schemas for the PawPlanner API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from pawplanner.detection.aggregator import format_result

if TYPE_CHECKING:
    from pawplanner.detection.cycle import CycleOutcome


class DetectedObject(BaseModel):
    """A single deduplicated label with the confidence it was first seen at."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    display: str = Field(description="Human-readable row, e.g. 'cat: 40.00%'")


class CycleResponse(BaseModel):
    """Result of one detect-and-aggregate cycle."""

    cycle_id: int = Field(description="0 means nothing has been detected yet")
    objects: list[DetectedObject] = Field(description="Sorted by label, one entry per label")
    failed: bool = Field(description="True if decoding or inference failed; objects is then empty")
    error: str | None = None

    @classmethod
    def from_outcome(cls, outcome: CycleOutcome) -> CycleResponse:
        return cls(
            cycle_id=outcome.cycle_id,
            objects=[
                DetectedObject(label=result.label, confidence=result.confidence, display=format_result(result))
                for result in outcome.results
            ],
            failed=outcome.failed,
            error=outcome.error,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    rejected_detections: int
    active_sessions: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'object_detection'")
    status: str = Field(description="Model status: 'active', 'available', or 'requires_license'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
