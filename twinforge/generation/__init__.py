# -*- coding: utf-8 -*-
"""Streaming generation pipelines.

A pipeline turns one long-running remote generation (a weekly meal plan, a batch
of recipes, a shopping list) into a session whose placeholder units are filled in
as the backend streams them, with salvage from the persistent store when the
stream breaks.
"""

from .controller import PipelineSessionController
from .errors import (
    GenerationError,
    GenerationRejected,
    InvalidStepError,
    PartialGenerationError,
    PersistenceError,
    RecoveryExhausted,
    StreamAnomalyError,
    TransportError,
    ValidationError,
)
from .kinds import GENERATION_KINDS, GenerationKind, get_kind

__all__ = [
    "GENERATION_KINDS",
    "GenerationError",
    "GenerationKind",
    "GenerationRejected",
    "InvalidStepError",
    "PartialGenerationError",
    "PersistenceError",
    "PipelineSessionController",
    "RecoveryExhausted",
    "StreamAnomalyError",
    "TransportError",
    "ValidationError",
    "get_kind",
]
