"""Reduce raw per-region observations into a sorted, deduplicated result set."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """One classification emitted by the engine for a single detected region.

    A missing or empty label marks the observation as malformed.
    """

    label: str | None
    confidence: float
    region_id: Hashable = None


@dataclass(frozen=True)
class AggregatedResult:
    """A single label with the confidence it was first seen at."""

    label: str
    confidence: float


ResultSet = tuple[AggregatedResult, ...]


def aggregate(observations: Iterable[Observation]) -> ResultSet:
    """Deduplicate observations by label and sort them by label.

    The first observation of a label wins; later ones are discarded without
    comparing confidence. Observations without a label are skipped.

    Args:
        observations: Observations in the order the engine produced them.

    Returns:
        Results sorted by label ascending, one per distinct label.
    """
    first_seen: dict[str, float] = {}
    dropped = 0
    for observation in observations:
        if not observation.label:
            dropped += 1
            continue
        if observation.label not in first_seen:
            first_seen[observation.label] = observation.confidence

    if dropped:
        logger.debug("Skipped %d observation(s) without a label", dropped)

    return tuple(AggregatedResult(label=label, confidence=first_seen[label]) for label in sorted(first_seen))


def format_result(result: AggregatedResult) -> str:
    """Render a result as ``"label: 42.00%"``."""
    return f"{result.label}: {result.confidence * 100:.2f}%"
