"""Exception taxonomy for PawPlanner."""

from __future__ import annotations


class PawPlannerError(Exception):
    """Base class for all PawPlanner errors."""


class SelectionCancelled(PawPlannerError):  # noqa: N818
    """The user aborted the image pick. Prior results stay in place."""


class InferenceError(PawPlannerError):
    """The inference engine failed (model load, engine-internal error)."""


class DecodeError(InferenceError):
    """The image could not be decoded into the form the engine needs."""
