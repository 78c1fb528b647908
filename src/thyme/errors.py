"""Errors that stop a library run."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Fatal error: the run cannot start or must halt to keep the index consistent."""


__all__ = ["PipelineError"]
