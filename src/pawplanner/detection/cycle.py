"""Detect-and-aggregate cycles with supersession.

Each image selection starts a cycle tagged with a monotonically increasing
id. The engine call runs through an awaitable runner (typically the
inference thread pool); everything after it runs on the event loop, so a
single id comparison decides whether the result is still wanted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

from pawplanner.detection.aggregator import ResultSet, aggregate
from pawplanner.errors import InferenceError, SelectionCancelled

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from pawplanner.detection.aggregator import Observation

logger = logging.getLogger(__name__)

ImageT = TypeVar("ImageT")
ImageT_contra = TypeVar("ImageT_contra", contravariant=True)


class InferenceEngine(Protocol[ImageT_contra]):
    """Protocol for anything that turns an image into observations."""

    def detect(self, image: ImageT_contra) -> Sequence[Observation]:
        """Detect objects in an image.

        Raises:
            InferenceError: If the engine fails (DecodeError for bad images).
        """
        ...


@dataclass(frozen=True)
class CycleOutcome:
    """The result of one cycle, as handed to the presenter."""

    cycle_id: int
    results: ResultSet
    failed: bool = False
    error: str | None = None


EMPTY_OUTCOME = CycleOutcome(cycle_id=0, results=())


class Presenter(Protocol):
    """Receives every accepted cycle outcome."""

    def present(self, outcome: CycleOutcome) -> None: ...


class CycleController(Generic[ImageT]):
    """Runs one inference + aggregation cycle per image selection.

    Only the most recently started cycle may replace ``current`` or reach
    the presenter; results of superseded cycles are dropped when they
    arrive.
    """

    def __init__(
        self,
        engine: InferenceEngine[ImageT],
        presenter: Presenter | None = None,
        runner: Callable[..., Awaitable[Sequence[Observation]]] | None = None,
    ) -> None:
        self._engine = engine
        self._presenter = presenter
        self._runner = runner if runner is not None else asyncio.to_thread
        self._cycle_id: int = 0
        self._current: CycleOutcome = EMPTY_OUTCOME
        self._closed = False

    @property
    def current(self) -> CycleOutcome:
        """The outcome currently on display."""
        return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    async def select(self, image: ImageT | None) -> CycleOutcome | None:
        """Run a cycle for a newly selected image.

        Args:
            image: The selected image, or None if the selection was cancelled.

        Returns:
            The accepted outcome, or None if the selection was cancelled or
            the cycle was superseded before its engine call finished.

        Raises:
            TimeoutError: If the runner could not schedule the engine call.
            RuntimeError: If the controller has been closed.
        """
        if self._closed:
            raise RuntimeError("Cycle controller is closed")

        if image is None:
            logger.info("Selection cancelled; keeping cycle %d on display", self._current.cycle_id)
            return None

        self._cycle_id += 1
        cycle_id = self._cycle_id

        try:
            observations = await self._runner(self._engine.detect, image)
        except TimeoutError:
            # The cycle id stays claimed: older in-flight cycles remain superseded.
            logger.warning("Cycle %d rejected: no inference slot available", cycle_id)
            raise
        except InferenceError as exc:
            if cycle_id != self._cycle_id:
                logger.info("Dropping failure of superseded cycle %d", cycle_id)
                return None
            logger.warning("Cycle %d failed: %s", cycle_id, exc)
            outcome = CycleOutcome(cycle_id=cycle_id, results=(), failed=True, error=str(exc))
        else:
            if cycle_id != self._cycle_id:
                logger.info("Dropping result of superseded cycle %d (current is %d)", cycle_id, self._cycle_id)
                return None
            outcome = CycleOutcome(cycle_id=cycle_id, results=aggregate(observations))
            logger.info("Cycle %d produced %d label(s)", cycle_id, len(outcome.results))

        self._current = outcome
        if self._presenter is not None:
            self._presenter.present(outcome)
        return outcome

    async def select_from(self, source: Callable[[], Awaitable[ImageT | None]]) -> CycleOutcome | None:
        """Pull an image from an async image source and run a cycle for it.

        A source returning None or raising SelectionCancelled is a cancellation.
        """
        try:
            image = await source()
        except SelectionCancelled:
            image = None
        return await self.select(image)

    def close(self) -> None:
        """Tear down: drop in-flight results and clear the displayed outcome."""
        self._closed = True
        self._cycle_id += 1
        self._current = EMPTY_OUTCOME
