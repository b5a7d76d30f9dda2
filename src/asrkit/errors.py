"""Errors raised by the model lifecycle and its collaborators."""

import asyncio


class PipelineError(Exception):
    """Base class for asrkit errors."""


class ModelsUnavailable(PipelineError):
    """Model folder or one of its artifacts is missing, or stages are not loaded."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ResolutionFailed(PipelineError):
    """The artifact resolver could not produce a local model folder."""

    def __init__(self, variant: str, repo: str | None, cause: BaseException | None = None):
        message = f"Could not resolve model '{variant}'"
        if repo:
            message += f" from {repo}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.variant = variant
        self.repo = repo
        self.cause = cause


class Busy(PipelineError):
    """A lifecycle operation was requested while another one is running."""

    def __init__(self, operation: str, in_flight: str | None):
        super().__init__(f"Cannot {operation}: '{in_flight}' is already in progress")
        self.operation = operation
        self.in_flight = in_flight


class InvalidComputeConfiguration(ValueError, PipelineError):
    """Compute configuration holds a value that is not a known compute unit."""


class IllegalTransition(RuntimeError, PipelineError):
    """Model state was asked to move along an edge outside the lifecycle graph."""


class Cancelled(asyncio.CancelledError):
    """A lifecycle operation was cancelled after its state was rolled back.

    Subclasses CancelledError so task cancellation keeps propagating.
    """
