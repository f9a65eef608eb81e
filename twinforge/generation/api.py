# -*- coding: utf-8 -*-
"""Generation pipeline endpoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from .controller import PipelineSessionController
from .errors import InvalidStepError, PersistenceError, ValidationError
from .models import (
    GenerationStateResponse,
    SavedArtifactItem,
    SavedArtifactListResponse,
    SaveResponse,
)
from .registry import PipelineRegistry, get_registry

router = APIRouter(prefix="/api/generation", tags=["Generation"])


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def get_controller(
    kind: str,
    user_id: str = Depends(get_user_id),
    registry: PipelineRegistry = Depends(get_registry),
) -> PipelineSessionController:
    try:
        return registry.get(user_id, kind.replace("-", "_"))
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown generation kind: {kind}")


@router.post("/{kind}/start", response_model=GenerationStateResponse, summary="Start a generation in the background")
async def start_generation(
    config: Optional[Dict[str, Any]] = Body(default=None),
    controller: PipelineSessionController = Depends(get_controller),
):
    try:
        await controller.start_pipeline(config)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return controller.state()


@router.post("/{kind}/generate", response_model=GenerationStateResponse, summary="Generate and wait for the result")
async def generate(
    config: Optional[Dict[str, Any]] = Body(default=None),
    controller: PipelineSessionController = Depends(get_controller),
):
    try:
        await controller.generate(config)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return controller.state()


@router.get("/{kind}", response_model=GenerationStateResponse, summary="Current generation state")
async def get_state(controller: PipelineSessionController = Depends(get_controller)):
    return controller.state()


@router.post("/{kind}/cancel", response_model=GenerationStateResponse, summary="Abort the running generation")
async def cancel_generation(controller: PipelineSessionController = Depends(get_controller)):
    controller.cancel()
    return controller.state()


@router.post("/{kind}/reset", response_model=GenerationStateResponse, summary="Return to configuration")
async def reset_generation(controller: PipelineSessionController = Depends(get_controller)):
    controller.reset_pipeline()
    return controller.state()


@router.post("/{kind}/discard", response_model=GenerationStateResponse, summary="Drop an unsaved result")
async def discard_generation(controller: PipelineSessionController = Depends(get_controller)):
    try:
        await controller.discard()
    except InvalidStepError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return controller.state()


@router.post("/{kind}/save", response_model=SaveResponse, summary="Persist the validated result")
async def save_generation(controller: PipelineSessionController = Depends(get_controller)):
    try:
        artifact_id = await controller.save()
    except InvalidStepError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return SaveResponse(artifact_id=artifact_id)


@router.post("/{kind}/resume", response_model=GenerationStateResponse, summary="Restore the last unsaved result")
async def resume_generation(controller: PipelineSessionController = Depends(get_controller)):
    try:
        session = await controller.resume()
    except InvalidStepError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if session is None:
        raise HTTPException(status_code=404, detail="Nothing to resume")
    return controller.state()


@router.get("/{kind}/saved", response_model=SavedArtifactListResponse, summary="List saved artifacts")
async def list_saved_artifacts(controller: PipelineSessionController = Depends(get_controller)):
    items = await controller.store.list_saved(user_id=controller.subject_id, kind=controller.kind.name)
    return SavedArtifactListResponse(
        count=len(items),
        items=[
            SavedArtifactItem(
                artifact_id=item["artifact_id"],
                kind=item["kind"],
                summary=item.get("summary") or {},
                payload=item.get("payload") or {},
                unit_count=item.get("unit_count") or 0,
                created_at=item["created_at"],
                saved_at=item.get("saved_at"),
            )
            for item in items
        ],
    )
