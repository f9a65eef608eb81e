# -*- coding: utf-8 -*-
"""Generation pipeline errors."""

from __future__ import annotations


class GenerationError(Exception):
    """Base class for every pipeline failure."""


class ValidationError(GenerationError):
    """The configuration does not satisfy the flow's preconditions; nothing was sent."""


class TransportError(GenerationError):
    """The remote stream could not be opened or broke while being read."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PartialGenerationError(GenerationError):
    """The stream ended without a ``complete`` record."""


class StreamAnomalyError(PartialGenerationError):
    """The stream delivered more overflow units than the session accepts."""


class RecoveryExhausted(GenerationError):
    """Salvage from the persistent store found nothing usable."""


class GenerationRejected(GenerationError):
    """The backend reported a failure through an ``error`` record."""


class PersistenceError(GenerationError):
    """Saving or reading the accepted artifact failed."""


class InvalidStepError(GenerationError):
    """The operation is not allowed in the session's current step."""

    def __init__(self, operation: str, step: str) -> None:
        super().__init__(f"{operation} is not allowed while the pipeline is in step '{step}'")
        self.operation = operation
        self.step = step
